import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy import inspect as sa_inspect

from temis.api.schema import ChangeEvent
from temis.util.helper.exceptions import RealtimeException

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]

POSTGRES_CHANGES = "postgres_changes"
TOUS_EVENEMENTS = "*"


class _Liaison:
    def __init__(self, filtre: Dict[str, str], callback: ChangeCallback):
        self.event = filtre.get("event", TOUS_EVENEMENTS)
        self.schema = filtre.get("schema", "public")
        self.table = filtre.get("table")
        self.callback = callback

    def accepte(self, evenement: ChangeEvent) -> bool:
        if self.table and self.table != evenement.table:
            return False
        if self.schema != evenement.schema_name:
            return False
        return self.event == TOUS_EVENEMENTS or self.event == evenement.event_type.value


class RealtimeChannel:
    """Canal nommé regroupant des observateurs de changements de lignes."""

    def __init__(self, hub: "RealtimeHub", name: str):
        self.hub = hub
        self.name = name
        self._liaisons: List[_Liaison] = []
        self.subscribed = False

    def on(self, event_type: str, filtre: Dict[str, str], callback: ChangeCallback) -> "RealtimeChannel":
        if event_type != POSTGRES_CHANGES:
            raise RealtimeException(f"Type d'événement non supporté : {event_type}")
        self._liaisons.append(_Liaison(filtre, callback))
        return self

    def subscribe(self) -> "RealtimeChannel":
        self.hub._attacher(self)
        self.subscribed = True
        logger.info(f"[REALTIME] Canal {self.name} abonné")
        return self

    def unsubscribe(self) -> None:
        if not self.subscribed:
            return
        self.hub._detacher(self)
        self.subscribed = False
        logger.info(f"[REALTIME] Canal {self.name} désabonné")

    async def _diffuser(self, evenement: ChangeEvent) -> None:
        for liaison in list(self._liaisons):
            if not liaison.accepte(evenement):
                continue
            resultat = liaison.callback(evenement)
            if inspect.isawaitable(resultat):
                await resultat


class RealtimeHub:
    """Flux de changements publiés par la couche d'accès aux données après commit."""

    def __init__(self):
        self._canaux: List[RealtimeChannel] = []
        self.closed = False

    def channel(self, name: str) -> RealtimeChannel:
        return RealtimeChannel(self, name)

    def _attacher(self, canal: RealtimeChannel) -> None:
        if self.closed:
            raise RealtimeException(f"Impossible d'abonner le canal {canal.name} : flux fermé")
        self._canaux.append(canal)

    def _detacher(self, canal: RealtimeChannel) -> None:
        if canal in self._canaux:
            self._canaux.remove(canal)

    @property
    def subscriptions(self) -> int:
        return len(self._canaux)

    async def publish(self, evenement: ChangeEvent) -> None:
        logger.debug(f"[REALTIME] {evenement.event_type.value} sur {evenement.table}")
        for canal in list(self._canaux):
            try:
                await canal._diffuser(evenement)
            except Exception:
                logger.exception(f"[REALTIME] Erreur dans un observateur du canal {canal.name}")

    def close(self) -> None:
        for canal in list(self._canaux):
            canal.subscribed = False
        self._canaux.clear()
        self.closed = True


def snapshot(instance: Any) -> Dict[str, Any]:
    """Copie superficielle des colonnes d'une ligne ORM."""
    mapper = sa_inspect(instance).mapper
    return {attr.key: getattr(instance, attr.key) for attr in mapper.column_attrs}


def build_event(event_type: str, table: str, new: Optional[Dict[str, Any]] = None, old: Optional[Dict[str, Any]] = None) -> ChangeEvent:
    return ChangeEvent(event_type=event_type, table=table, new=new or {}, old=old or {})
