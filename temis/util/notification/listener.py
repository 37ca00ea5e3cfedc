import inspect
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from temis.api.schema import ChangeEvent
from temis.util.db.realtime import POSTGRES_CHANGES, TOUS_EVENEMENTS, RealtimeChannel, RealtimeHub
from temis.util.helper.enum import EvenementChangementEnum, TypeNotificationEnum
from temis.util.notification.bus import NotificationBus

logger = logging.getLogger(__name__)

NON_SPECIFIE = "Non spécifié"

# Horodatage technique, modifié à chaque écriture
CHAMPS_IGNORES = frozenset({"updated_at"})

Refetch = Callable[[], Union[None, Awaitable[Any]]]


def formater_valeur(valeur: Any) -> str:
    if valeur is None or (isinstance(valeur, str) and not valeur.strip()):
        return NON_SPECIFIE
    if isinstance(valeur, Enum):
        return str(valeur.value)
    if isinstance(valeur, bool):
        return "oui" if valeur else "non"
    if isinstance(valeur, float) and valeur.is_integer():
        return str(int(valeur))
    if isinstance(valeur, Decimal) and valeur.is_finite() and valeur == valeur.to_integral_value():
        return str(int(valeur))
    if isinstance(valeur, (datetime, date)):
        return valeur.isoformat()
    return str(valeur)


def diff_lignes(ancienne: Mapping[str, Any], nouvelle: Mapping[str, Any]) -> List[Tuple[str, Any, Any]]:
    """Colonnes dont la valeur diffère (comparaison superficielle et stricte)."""
    return [
        (champ, ancienne[champ], valeur)
        for champ, valeur in nouvelle.items()
        if champ in ancienne and champ not in CHAMPS_IGNORES and ancienne[champ] != valeur
    ]


def formater_changements(changements: List[Tuple[str, Any, Any]]) -> str:
    return ", ".join(
        f"{champ}: {formater_valeur(avant)} → {formater_valeur(apres)}" for champ, avant, apres in changements
    )


class Descripteur:
    """Libellés des notifications d'une table."""

    def __init__(self, titre: str, etiquette: Optional[Callable[[Mapping[str, Any]], Any]] = None):
        self.titre = titre
        self.etiquette = etiquette or (lambda row: row.get("nom") or row.get("id"))

    def _nom(self, row: Mapping[str, Any]) -> str:
        return formater_valeur(self.etiquette(row))

    def insertion(self, row: Mapping[str, Any]) -> str:
        return f"{self.titre} ajouté(e) - {self._nom(row)}"

    def modification(self, row: Mapping[str, Any], changements: List[Tuple[str, Any, Any]]) -> str:
        return f"{self.titre} modifié(e) - {self._nom(row)} - Modifications: {formater_changements(changements)}"

    def suppression(self, row: Mapping[str, Any]) -> str:
        return f"{self.titre} supprimé(e) - {self._nom(row)}"


class DescripteurFacture(Descripteur):
    def __init__(self):
        super().__init__("Facture", lambda row: row.get("nom_client"))

    def insertion(self, row):
        return (
            f"Nouvelle facture créée - Client: {formater_valeur(row.get('nom_client'))}"
            f" - Montant: {formater_valeur(row.get('prix'))}€ - N° {formater_valeur(row.get('nfacture'))}"
        )

    def modification(self, row, changements):
        return (
            f"Facture modifiée - Client: {formater_valeur(row.get('nom_client'))}"
            f" - Modifications: {formater_changements(changements)}"
        )

    def suppression(self, row):
        return (
            f"Facture supprimée - N° {formater_valeur(row.get('nfacture'))}"
            f" - Client: {formater_valeur(row.get('nom_client'))}"
        )


def _personne(row: Mapping[str, Any]) -> str:
    return " ".join(str(p) for p in (row.get("prenom"), row.get("nom")) if p) or str(row.get("id"))


DESCRIPTEURS: Dict[str, Descripteur] = {
    "FactureDemi": DescripteurFacture(),
    "formations": Descripteur("Formation", lambda row: row.get("titre")),
    "formateurs": Descripteur("Formateur", _personne),
    "participants": Descripteur("Participant", _personne),
    "lieux": Descripteur("Lieu"),
    "emails": Descripteur("Email", lambda row: row.get("subject") or row.get("from_email")),
    "parametres": Descripteur("Paramètre", lambda row: row.get("libelle")),
}


def descripteur_pour(table: str) -> Descripteur:
    return DESCRIPTEURS.get(table) or Descripteur(table)


class RealtimeChangeListener:
    """Abonnement aux changements d'une table, lié à la durée de vie d'une vue.

    Chaque événement produit au plus une notification puis exactement un
    rafraîchissement de la liste affichée.
    """

    def __init__(
        self,
        hub: RealtimeHub,
        bus: NotificationBus,
        table: str,
        refetch: Optional[Refetch] = None,
        describe: Optional[Descripteur] = None,
        schema: str = "public",
    ):
        self.hub = hub
        self.bus = bus
        self.table = table
        self.schema = schema
        self.refetch = refetch
        self.describe = describe or descripteur_pour(table)
        self._channel: Optional[RealtimeChannel] = None

    @property
    def subscribed(self) -> bool:
        return self._channel is not None and self._channel.subscribed

    def start(self) -> bool:
        if self.subscribed:
            return True
        try:
            self._channel = (
                self.hub.channel(f"{self.table}-changes")
                .on(POSTGRES_CHANGES, {"event": TOUS_EVENEMENTS, "schema": self.schema, "table": self.table}, self._on_change)
                .subscribe()
            )
            logger.info(f"[REALTIME] Écoute des changements sur {self.table}")
            return True
        except Exception:
            logger.exception(f"[REALTIME] Abonnement impossible sur {self.table}")
            self._channel = None
            return False

    def stop(self) -> None:
        if self._channel is not None:
            self._channel.unsubscribe()
            self._channel = None

    async def __aenter__(self) -> "RealtimeChangeListener":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _decrire(self, evenement: ChangeEvent) -> Optional[Tuple[str, TypeNotificationEnum]]:
        if evenement.event_type == EvenementChangementEnum.INSERT:
            return self.describe.insertion(evenement.new), TypeNotificationEnum.SUCCESS
        if evenement.event_type == EvenementChangementEnum.DELETE:
            return self.describe.suppression(evenement.old), TypeNotificationEnum.ERROR
        changements = diff_lignes(evenement.old, evenement.new)
        if not changements:
            return None
        return self.describe.modification(evenement.new, changements), TypeNotificationEnum.INFO

    async def _on_change(self, evenement: ChangeEvent) -> None:
        logger.info(f"[REALTIME] {evenement.event_type.value} reçu sur {self.table}")
        description = self._decrire(evenement)
        if description is not None:
            message, type = description
            row = evenement.old if evenement.event_type == EvenementChangementEnum.DELETE else evenement.new
            self.bus.add(message, type, {
                "table": self.table,
                "action": evenement.event_type.value,
                "details": row.get("id"),
            })

        if self.refetch is not None:
            resultat = self.refetch()
            if inspect.isawaitable(resultat):
                await resultat
