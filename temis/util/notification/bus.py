import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from temis.api.schema import Notification
from temis.util.helper.enum import TypeNotificationEnum

logger = logging.getLogger(__name__)

DUREE_AFFICHAGE = 7.0


class NotificationBus:
    """Liste ordonnée de messages éphémères destinés à l'utilisateur.

    Chaque notification est retirée automatiquement après ``ttl`` secondes.
    Quand une boucle asyncio tourne, un minuteur indépendant est armé par
    notification ; l'échéance est aussi conservée pour que toute lecture
    écarte les notifications expirées, avec ou sans boucle.
    """

    def __init__(self, ttl: float = DUREE_AFFICHAGE, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._notifications: Dict[str, Notification] = {}
        self._echeances: Dict[str, float] = {}
        self._minuteurs: Dict[str, asyncio.TimerHandle] = {}
        self._dernier_id = 0

    def _nouvel_id(self) -> str:
        candidat = time.time_ns() // 1_000_000
        self._dernier_id = max(candidat, self._dernier_id + 1)
        return str(self._dernier_id)

    def add(
        self,
        message: str,
        type: TypeNotificationEnum | str = TypeNotificationEnum.INFO,
        data: Optional[Dict[str, Any]] = None,
    ) -> str:
        notification = Notification(
            id=self._nouvel_id(),
            message=message,
            type=TypeNotificationEnum(type),
            timestamp=datetime.now(timezone.utc),
            data=data,
        )
        self._notifications[notification.id] = notification
        self._echeances[notification.id] = self._clock() + self.ttl

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._minuteurs[notification.id] = loop.call_later(self.ttl, self.dismiss, notification.id)

        logger.info(f"[NOTIF] {notification.type.value} #{notification.id} : {message}")
        return notification.id

    def dismiss(self, notification_id: str) -> None:
        self._notifications.pop(notification_id, None)
        self._echeances.pop(notification_id, None)
        minuteur = self._minuteurs.pop(notification_id, None)
        if minuteur is not None:
            minuteur.cancel()

    def _purger(self) -> None:
        maintenant = self._clock()
        expirees = [nid for nid, echeance in self._echeances.items() if echeance <= maintenant]
        for notification_id in expirees:
            self.dismiss(notification_id)

    def active(self) -> List[Notification]:
        self._purger()
        return list(self._notifications.values())

    def get(self, notification_id: str) -> Optional[Notification]:
        self._purger()
        return self._notifications.get(notification_id)

    def __len__(self) -> int:
        return len(self.active())

    def close(self) -> None:
        for minuteur in self._minuteurs.values():
            minuteur.cancel()
        self._minuteurs.clear()
        self._notifications.clear()
        self._echeances.clear()
