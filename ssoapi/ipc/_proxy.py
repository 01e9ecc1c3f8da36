"""Blocking client-side proxy for the remote :class:`SsoService`."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ssoapi.ipc._common import _logger
from ssoapi.ipc._protocol import AuthCallback, SsoService
from ssoapi.ipc._types import MethodKind, RemoteMethodInfo, remote_methods
from ssoapi.ipc._wire import decode_result

if TYPE_CHECKING:
    from ssoapi.ipc._transport import Link


class RemoteSsoService:
    """Dynamic proxy issuing :class:`SsoService` calls over a :class:`Link`.

    Every call blocks the calling thread until the service's synchronous
    reply arrives; two-phase results arrive later on the ``AuthCallback``
    passed to the call.  Callers on an event loop should run calls in a
    worker thread.

    Raises:
        TransportError: From any call whose Link fails or whose service
            implementation raised.

    """

    def __init__(self, link: Link, protocol: type = SsoService) -> None:
        """Wrap *link*; methods are derived from *protocol*."""
        self._link = link
        self._protocol = protocol
        self._methods = remote_methods(protocol)

    @property
    def link(self) -> Link:
        """The Link this proxy issues calls over."""
        return self._link

    def release_callback(self, callback: AuthCallback) -> None:
        """Stop routing deliveries to *callback*."""
        self._link.unregister_callback(callback)

    def __getattr__(self, name: str) -> Any:
        info = self._methods.get(name)
        if info is None:
            raise AttributeError(f"{self._protocol.__name__} has no remote method '{name}'")
        caller = self._make_caller(info)
        self.__dict__[name] = caller
        return caller

    def _make_caller(self, info: RemoteMethodInfo) -> Callable[..., object]:
        link = self._link
        order = [*info.param_names, *([info.callback_param] if info.callback_param else [])]

        def caller(*args: object, **kwargs: object) -> object:
            if len(args) > len(order):
                raise TypeError(f"{info.name}() takes {len(order)} arguments but {len(args)} were given")
            bound = dict(zip(order, args, strict=False))
            overlap = bound.keys() & kwargs.keys()
            if overlap:
                raise TypeError(f"{info.name}() got multiple values for {sorted(overlap)}")
            bound.update(kwargs)
            missing = [p for p in order if p not in bound]
            if missing:
                raise TypeError(f"{info.name}() missing arguments: {missing}")

            callback_id: int | None = None
            callback: AuthCallback | None = None
            if info.kind is MethodKind.TWO_PHASE:
                target = bound.pop(info.callback_param or "")
                if not isinstance(target, AuthCallback):
                    raise TypeError(f"{info.name}() '{info.callback_param}' must implement AuthCallback")
                callback = target
                callback_id = link.register_callback(callback)

            params = {name: str(bound[name]) for name in info.param_names}
            if _logger.isEnabledFor(logging.DEBUG):
                _logger.debug("Remote call: method=%s, callback_id=%s", info.name, callback_id)
            try:
                frame = link.call(info, params, callback_id)
            except BaseException:
                if callback is not None:
                    link.unregister_callback(callback)
                raise
            return decode_result(info, frame.batch)

        caller.__name__ = info.name
        caller.__doc__ = info.doc
        return caller
