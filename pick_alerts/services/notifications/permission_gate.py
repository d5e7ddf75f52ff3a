import enum
from typing import Callable, Dict, List, Optional

from .ports import NotificationPlatform
from pick_alerts.utils.logging import get_logger

logger = get_logger()

PermissionListener = Callable[["PermissionState"], None]


class PermissionState(enum.Enum):
    UNREQUESTED = "unrequested"
    GRANTED = "granted"
    DENIED = "denied"


_PLATFORM_STATES = {
    "default": PermissionState.UNREQUESTED,
    "granted": PermissionState.GRANTED,
    "denied": PermissionState.DENIED,
}


class PermissionGate:
    """Session view of the platform notification permission.

    unrequested -> granted | denied. Denied is terminal: the platform refuses
    to prompt again, so the gate never asks. Nothing is persisted.
    """

    def __init__(self, platform: Optional[NotificationPlatform]):
        self._platform = platform
        self._listeners: List[PermissionListener] = []
        self._state = self._read_platform_state()

    def _read_platform_state(self) -> PermissionState:
        if not self.is_supported:
            return PermissionState.DENIED
        return _PLATFORM_STATES.get(
            self._platform.permission(), PermissionState.UNREQUESTED
        )

    @property
    def is_supported(self) -> bool:
        return self._platform is not None and self._platform.is_supported()

    @property
    def state(self) -> PermissionState:
        return self._state

    @property
    def is_granted(self) -> bool:
        return self._state is PermissionState.GRANTED

    def subscribe(self, listener: PermissionListener) -> Callable[[], None]:
        """Register a state listener; returns its unsubscribe callable."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def request_permission(self) -> PermissionState:
        if self._state is PermissionState.GRANTED:
            return self._state

        if self._state is PermissionState.DENIED:
            logger.info("Notification permission is denied; not prompting again")
            return self._state

        try:
            result = await self._platform.request_permission()
        except Exception as e:
            logger.warning(f"Notification permission request failed: {e}")
            result = "denied"

        # A dismissed prompt leaves the platform at "default"
        self._set_state(_PLATFORM_STATES.get(result, PermissionState.UNREQUESTED))
        return self._state

    def refresh(self) -> PermissionState:
        """Pick up a change made outside the app (e.g. browser settings)."""
        self._set_state(self._read_platform_state())
        return self._state

    def status(self) -> Dict[str, object]:
        return {
            "supported": self.is_supported,
            "permission": self._state.value,
            "can_request": self._state is PermissionState.UNREQUESTED,
        }

    def _set_state(self, state: PermissionState) -> None:
        if state is self._state:
            return
        logger.info(
            f"Notification permission changed: {self._state.value} -> {state.value}"
        )
        self._state = state
        for listener in list(self._listeners):
            listener(state)
