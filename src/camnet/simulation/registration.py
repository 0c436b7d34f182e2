"""GlobalRegistration -- optional central directory of cameras.

With global registration enabled, new targets are not announced by the
engine directly: they are queued here and announced to every online
camera on the next ``update()``.  The registration can itself fail; while
offline it keeps its queue and announces nothing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from .messages import Message, MessageType

if TYPE_CHECKING:
    from .camera import CameraAgent
    from .target import Target


class GlobalRegistration:
    def __init__(self) -> None:
        self._cameras: dict[str, CameraAgent] = {}
        self._queue: list[Target] = []
        self._offline_for = 0

    @property
    def cameras(self) -> list[CameraAgent]:
        return list(self._cameras.values())

    @property
    def is_offline(self) -> bool:
        return self._offline_for != 0

    @property
    def pending(self) -> list[Target]:
        return list(self._queue)

    def add_camera(self, camera: CameraAgent) -> None:
        self._cameras[camera.camera_id] = camera

    def remove_camera(self, camera_id: str) -> None:
        self._cameras.pop(camera_id, None)

    def set_offline(self, duration: int) -> None:
        """Fail for *duration* ticks (-1 = until brought back)."""
        self._offline_for = duration
        logger.info(f"Global registration offline for {duration}")

    def bring_online(self) -> None:
        self._offline_for = 0

    def advertise_globally(self, target: Target) -> None:
        if target not in self._queue:
            self._queue.append(target)

    def forget(self, target: Target) -> None:
        if target in self._queue:
            self._queue.remove(target)

    def update(self) -> None:
        """Count down an outage, or announce every queued target."""
        if self._offline_for > 0:
            self._offline_for -= 1
            return
        if self._offline_for < 0:
            return
        for target in self._queue:
            for camera in self._cameras.values():
                if camera.is_offline:
                    continue
                camera.ai_node.receive_message(
                    Message("", camera.camera_id, MessageType.START_SEARCH, target)
                )
        self._queue = []
