from datetime import datetime, date, timezone
import logging
import re
import unicodedata
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import delete, func, or_
from sqlalchemy.orm import selectinload
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from temis.api.model import (
    Email, FactureDemi, Formateur, Formation, FormationFormateur, FormationParticipant,
    Lieu, Parametre, Participant, Utilisateur
)
from temis.util.helper.enum import (
    EvenementChangementEnum, PeriodeEnum, StatutInscriptionEnum, TypeNotificationEnum, TypeParametreEnum
)
from temis.api.schema import (
    AssistantResponse, CarteFormateur, CarteFormation,
    EmailLight, EmailResponse,
    FactureCreate, FactureResponse, FactureUpdate,
    FormateurLight, FormateurResponse,
    FormationCreate, FormationResponse, FormationUpdate,
    InscriptionResponse, LieuCreate, LieuLight, LieuResponse, LieuUpdate,
    LoginResponse, ParametreCreate, ParametreResponse, ParametreUpdate,
    ParticipantCreate, ParticipantLight, ParticipantResponse, ParticipantUpdate,
    ReponseIA, ResultatRecherche, UtilisateurCreate, UtilisateurResponse
)
from temis.api.security import create_access_token, hash_password, verify_password
from temis.util.db.realtime import RealtimeHub, build_event, snapshot
from temis.util.db.setting import settings
from temis.util.external.geo import GeoService
from temis.util.external.webhook import WebhookClient, html_vers_texte
from temis.util.helper.exceptions import (
    MESSAGE_GENERIQUE, NotFoundException, PermissionException, RemoteStoreException,
    TemisException, ValidationException
)
from temis.util.helper.pricing import CHAMPS_PRIX, appliquer_modifications_prix
from temis.util.notification.bus import NotificationBus

logger = logging.getLogger(__name__)


class Plage(NamedTuple):
    """Intervalle de filtre : ``debut`` inclus, ``fin`` exclu."""
    debut: Any = None
    fin: Any = None


class _Suivi:
    def __init__(self, message: Optional[str], details: Any = None):
        self.message = message
        self.details = details


def _maintenant() -> datetime:
    return datetime.now(timezone.utc)


def generer_code(libelle: str) -> str:
    """Code ASCII en minuscules dérivé d'un libellé ("Établissement public" → "etablissement_public")."""
    decompose = unicodedata.normalize("NFD", libelle or "")
    sans_accents = "".join(c for c in decompose if not unicodedata.combining(c))
    return re.sub(r"[^a-z0-9]+", "_", sans_accents.lower()).strip("_")


class BaseService:
    def __init__(self, session: AsyncSession, bus: Optional[NotificationBus] = None, hub: Optional[RealtimeHub] = None):
        self.session = session
        self.bus = bus
        self.hub = hub

    async def commit(self):
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            error_msg = str(e.orig) if e.orig is not None else str(e)
            logger.error(f"Erreur d'intégrité lors du commit : {error_msg}")

            if "unique" in error_msg.lower() or "dupliqu" in error_msg.lower():
                raise RemoteStoreException(
                    "Une entrée avec ces informations existe déjà dans la base de données.",
                    status_code=409,
                )
            raise RemoteStoreException(
                "Violation d'intégrité : Entrée dupliquée ou contrainte échouée.",
                status_code=409,
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Erreur inattendue lors du commit : {str(e)}")
            raise RemoteStoreException(str(getattr(e, "orig", None) or e) or MESSAGE_GENERIQUE)

    async def refresh(self, instance):
        await self.session.refresh(instance)

    def _notifier(self, message: str, type: TypeNotificationEnum, data: Optional[Dict[str, Any]] = None):
        if self.bus is None:
            logger.debug(f"[NOTIF] (pas de bus) {type.value} : {message}")
            return None
        return self.bus.add(message, type, data)

    async def _publier(self, event_type: EvenementChangementEnum, table: str, new=None, old=None):
        if self.hub is None:
            return
        await self.hub.publish(build_event(event_type, table, new=new, old=old))

    @asynccontextmanager
    async def _action(self, table: str, action: str, message: Optional[str] = None, details: Any = None):
        """Encadre une action utilisateur : une seule notification, succès ou erreur.

        Sans ``message``, l'action est une lecture et ne notifie qu'en cas d'échec.
        """
        suivi = _Suivi(message, details)
        try:
            yield suivi
        except TemisException as e:
            logger.warning(f"{action} sur {table} refusée : {e.detail}")
            self._notifier(str(e.detail), TypeNotificationEnum.ERROR)
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            detail = str(getattr(e, "orig", None) or e) or MESSAGE_GENERIQUE
            logger.error(f"Erreur base de données ({action} sur {table}) : {detail}")
            self._notifier(detail, TypeNotificationEnum.ERROR)
            raise RemoteStoreException(detail) from e
        except Exception as e:
            logger.exception(f"Erreur inattendue ({action} sur {table})")
            self._notifier(MESSAGE_GENERIQUE, TypeNotificationEnum.ERROR)
            raise TemisException() from e
        else:
            if suivi.message:
                self._notifier(
                    suivi.message,
                    TypeNotificationEnum.SUCCESS,
                    {"table": table, "action": action, "details": suivi.details},
                )

    @staticmethod
    def _require_owner(owner_id: Optional[int], verbe: str) -> int:
        if owner_id is None:
            raise PermissionException(f"Vous devez être connecté pour {verbe}")
        return owner_id


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# Maintenance des tables de liaison
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class RelationMaintainer:
    """Réconcilie une table de liaison avec l'ensemble sélectionné pour un parent."""

    def __init__(self, session: AsyncSession, model, parent_column: str, child_column: str, hub: Optional[RealtimeHub] = None):
        self.session = session
        self.model = model
        self.parent_column = parent_column
        self.child_column = child_column
        self.hub = hub

    @property
    def table(self) -> str:
        return self.model.__tablename__

    def _parent(self):
        return getattr(self.model, self.parent_column)

    def _child(self):
        return getattr(self.model, self.child_column)

    async def child_ids(self, parent_id: int) -> List[int]:
        query = select(self._child()).where(self._parent() == parent_id)
        if hasattr(self.model, "is_active"):
            query = query.where(self.model.is_active.is_(True))
        result = await self.session.execute(query.order_by(self.model.id))
        return list(result.scalars().all())

    async def insert_all(self, parent_id: int, child_ids: Sequence[int], owner_id: Optional[int]) -> List[Dict[str, Any]]:
        if not child_ids:
            return []
        lignes = [
            self.model(**{self.parent_column: parent_id, self.child_column: child_id, "created_by": owner_id})
            for child_id in child_ids
        ]
        self.session.add_all(lignes)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Échec de l'insertion des liaisons {self.table} pour le parent {parent_id} : {str(e)}")
            raise RemoteStoreException(
                "Les liaisons n'ont pas pu être enregistrées. Veuillez réessayer."
            ) from e
        for ligne in lignes:
            await self.session.refresh(ligne)
        logger.info(f"{len(lignes)} liaison(s) {self.table} créée(s) pour le parent {parent_id}")

        instantanes = [snapshot(ligne) for ligne in lignes]
        if self.hub is not None:
            for instantane in instantanes:
                await self.hub.publish(build_event(EvenementChangementEnum.INSERT, self.table, new=instantane))
        return instantanes

    async def replace_all(self, parent_id: int, child_ids: Sequence[int], owner_id: Optional[int]) -> List[Dict[str, Any]]:
        """Supprime toutes les liaisons du parent puis insère la nouvelle sélection.

        Les deux étapes sont validées séparément : si l'insertion échoue, le
        parent reste sans liaison et l'erreur invite à réessayer.
        """
        result = await self.session.execute(select(self.model).where(self._parent() == parent_id))
        anciennes = [snapshot(ligne) for ligne in result.scalars().all()]

        await self.session.execute(delete(self.model).where(self._parent() == parent_id))
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Échec de la suppression des liaisons {self.table} pour le parent {parent_id} : {str(e)}")
            raise RemoteStoreException("Les liaisons existantes n'ont pas pu être supprimées.") from e
        logger.info(f"{len(anciennes)} liaison(s) {self.table} supprimée(s) pour le parent {parent_id}")
        if self.hub is not None:
            for ancienne in anciennes:
                await self.hub.publish(build_event(EvenementChangementEnum.DELETE, self.table, old=ancienne))

        try:
            return await self.insert_all(parent_id, child_ids, owner_id)
        except RemoteStoreException as e:
            raise RemoteStoreException(
                "Les anciennes liaisons ont été supprimées mais les nouvelles n'ont pas pu être enregistrées. Veuillez réessayer."
            ) from e

    async def synchroniser(
        self,
        parent_id: int,
        child_ids: Sequence[int],
        owner_id: Optional[int],
        reactivation: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Aligne une liaison à suppression logique sur la sélection, en un seul commit.

        Les lignes encore sélectionnées restent intactes, les retirées sont
        désactivées, les nouvelles sont créées ou réactivées avec ``reactivation``.
        """
        result = await self.session.execute(select(self.model).where(self._parent() == parent_id))
        existantes = {getattr(ligne, self.child_column): ligne for ligne in result.scalars().all()}
        selection = set(child_ids)
        maintenant = _maintenant()

        modifiees, creees = [], []
        for child_id, ligne in existantes.items():
            actif = child_id in selection
            if ligne.is_active == actif:
                continue
            modifiees.append((snapshot(ligne), ligne))
            ligne.is_active = actif
            ligne.updated_by = owner_id
            ligne.updated_at = maintenant
            if actif:
                for champ, valeur in (reactivation or {}).items():
                    setattr(ligne, champ, valeur)
        for child_id in child_ids:
            if child_id not in existantes:
                ligne = self.model(**{self.parent_column: parent_id, self.child_column: child_id, "created_by": owner_id})
                self.session.add(ligne)
                creees.append(ligne)

        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Échec de la synchronisation des liaisons {self.table} pour le parent {parent_id} : {str(e)}")
            raise RemoteStoreException(
                "Les liaisons n'ont pas pu être mises à jour. Veuillez réessayer."
            ) from e
        logger.info(
            f"Liaisons {self.table} du parent {parent_id} : {len(creees)} créée(s), {len(modifiees)} modifiée(s)"
        )

        evenements = []
        for ancienne, ligne in modifiees:
            await self.session.refresh(ligne)
            evenements.append(build_event(EvenementChangementEnum.UPDATE, self.table, new=snapshot(ligne), old=ancienne))
        for ligne in creees:
            await self.session.refresh(ligne)
            evenements.append(build_event(EvenementChangementEnum.INSERT, self.table, new=snapshot(ligne)))
        if self.hub is not None:
            for evenement in evenements:
                await self.hub.publish(evenement)
        return [evenement.new for evenement in evenements]


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# Service générique à suppression logique
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class SoftDeleteService(BaseService):
    model = None
    response_schema = None
    libelle = "Élément"
    accord = ""
    nom_objet = "un élément"
    champs_recherche: Tuple[str, ...] = ()
    ordre_defaut: Tuple[str, ...] = ("id",)
    proprietaire_requis = False

    @property
    def table(self) -> str:
        return self.model.__tablename__

    def _decrire(self, row) -> str:
        return str(getattr(row, "nom", None) or row.id)

    def _options(self) -> list:
        return []

    def _base_query(self, include_inactive: bool = False):
        query = select(self.model)
        if not include_inactive:
            query = query.where(self.model.is_active.is_(True))
        return query

    def _colonne(self, nom: str):
        colonne = getattr(self.model, nom, None)
        if colonne is None or not hasattr(colonne, "property"):
            raise ValidationException(f"Champ inconnu pour {self.table} : {nom}")
        return colonne

    def _appliquer_recherche(self, query, search: Optional[str], champs: Optional[Sequence[str]] = None):
        champs = champs or self.champs_recherche
        if not search or not search.strip() or not champs:
            return query
        motif = f"%{search.strip()}%"
        return query.where(or_(*[self._colonne(champ).ilike(motif) for champ in champs]))

    def _appliquer_filtres(self, query, filters: Optional[Dict[str, Any]]):
        for nom, valeur in (filters or {}).items():
            if valeur is None:
                continue
            colonne = self._colonne(nom)
            if isinstance(valeur, Plage):
                if valeur.debut is not None:
                    query = query.where(colonne >= valeur.debut)
                if valeur.fin is not None:
                    query = query.where(colonne < valeur.fin)
            elif isinstance(valeur, (list, tuple, set, frozenset)):
                query = query.where(colonne.in_(list(valeur)))
            else:
                query = query.where(colonne == valeur)
        return query

    def _ordonner(self, query, order_by: Optional[str]):
        champs = [order_by] if order_by else list(self.ordre_defaut)
        for champ in champs:
            descendant = champ.startswith("-")
            colonne = self._colonne(champ.lstrip("-"))
            query = query.order_by(colonne.desc() if descendant else colonne.asc())
        return query.order_by(self.model.id.asc())

    async def _serialiser(self, row):
        return self.response_schema.model_validate(row, from_attributes=True)

    async def _serialiser_liste(self, rows) -> list:
        return [self.response_schema.model_validate(row, from_attributes=True) for row in rows]

    async def _get_row(self, row_id: int, actif_seulement: bool = False):
        query = select(self.model).where(self.model.id == row_id)
        result = await self.session.execute(query)
        row = result.scalar_one_or_none()
        if row is None or (actif_seulement and not row.is_active):
            logger.warning(f"{self.libelle} ID {row_id} non trouvé{self.accord}")
            raise NotFoundException(f"{self.libelle} avec ID {row_id} non trouvé{self.accord}.")
        return row

    def _verifier_proprietaire(self, row, owner_id: int):
        if self.proprietaire_requis and row.created_by != owner_id:
            logger.warning(f"Utilisateur {owner_id} non propriétaire de {self.table} ID {row.id}")
            raise PermissionException(f"Vous n'êtes pas autorisé à modifier {self.nom_objet} créé{self.accord} par un autre utilisateur.")

    async def _preparer_creation(self, data) -> Dict[str, Any]:
        return data.model_dump()

    async def _preparer_modification(self, row, data) -> Dict[str, Any]:
        return data.model_dump(exclude_unset=True)

    async def _apres_creation(self, row, data, owner_id: int):
        pass

    async def _apres_modification(self, row, data, owner_id: int):
        pass

    async def get_all(
        self,
        search: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
        include_inactive: bool = False,
        search_fields: Optional[Sequence[str]] = None,
    ) -> Tuple[list, int]:
        limit = max(0, min(limit, settings.PAGE_SIZE_MAX))
        skip = max(0, skip)
        logger.info(f"Récupération de {self.table} (search={search!r}, filters={filters}, skip={skip}, limit={limit})")
        async with self._action(self.table, "Lecture"):
            query = self._base_query(include_inactive)
            query = self._appliquer_recherche(query, search, search_fields)
            query = self._appliquer_filtres(query, filters)

            total = (await self.session.execute(select(func.count()).select_from(query.subquery()))).scalar_one()

            query = self._ordonner(query, order_by).options(*self._options()).offset(skip).limit(limit)
            result = await self.session.execute(query)
            rows = result.scalars().all()
            return await self._serialiser_liste(rows), total

    async def get_by_id(self, row_id: int):
        logger.info(f"Récupération de {self.table} ID {row_id}")
        async with self._action(self.table, "Lecture"):
            row = await self._get_row(row_id)
            return await self._serialiser(row)

    async def create(self, data, owner_id: Optional[int]):
        async with self._action(self.table, "Création", f"{self.libelle} créé{self.accord} avec succès") as suivi:
            owner_id = self._require_owner(owner_id, f"créer {self.nom_objet}")
            logger.info(f"Création de {self.nom_objet} par l'utilisateur {owner_id}")
            valeurs = await self._preparer_creation(data)
            row = self.model(**valeurs)
            row.created_by = owner_id
            row.is_active = True
            self.session.add(row)
            await self.commit()
            await self.refresh(row)
            logger.info(f"{self.libelle} créé{self.accord} avec ID {row.id}")
            await self._publier(EvenementChangementEnum.INSERT, self.table, new=snapshot(row))

            await self._apres_creation(row, data, owner_id)
            suivi.details = self._decrire(row)
            return await self._serialiser(row)

    async def update(self, row_id: int, data, owner_id: Optional[int]):
        async with self._action(self.table, "Modification", f"{self.libelle} mis{'e' if self.accord else ''} à jour avec succès") as suivi:
            owner_id = self._require_owner(owner_id, f"modifier {self.nom_objet}")
            row = await self._get_row(row_id, actif_seulement=True)
            self._verifier_proprietaire(row, owner_id)

            logger.info(f"Mise à jour de {self.table} ID {row_id}")
            avant = snapshot(row)
            modifications = await self._preparer_modification(row, data)
            for key, value in modifications.items():
                setattr(row, key, value)
            row.updated_by = owner_id
            row.updated_at = _maintenant()
            await self.commit()
            await self.refresh(row)
            logger.info(f"{self.libelle} ID {row_id} mis{'e' if self.accord else ''} à jour")
            await self._publier(EvenementChangementEnum.UPDATE, self.table, new=snapshot(row), old=avant)

            await self._apres_modification(row, data, owner_id)
            suivi.details = self._decrire(row)
            return await self._serialiser(row)

    async def soft_delete(self, row_id: int, owner_id: Optional[int]) -> None:
        async with self._action(self.table, "Suppression", f"{self.libelle} supprimé{self.accord} avec succès") as suivi:
            owner_id = self._require_owner(owner_id, f"supprimer {self.nom_objet}")
            row = await self._get_row(row_id, actif_seulement=True)
            self._verifier_proprietaire(row, owner_id)

            logger.info(f"Suppression logique de {self.table} ID {row_id}")
            avant = snapshot(row)
            row.is_active = False
            row.updated_by = owner_id
            row.updated_at = _maintenant()
            await self.commit()
            await self.refresh(row)
            logger.info(f"{self.libelle} ID {row_id} désactivé{self.accord}")
            await self._publier(EvenementChangementEnum.UPDATE, self.table, new=snapshot(row), old=avant)
            suivi.details = self._decrire(row)


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# FORMATEUR
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class FormateurService(SoftDeleteService):
    model = Formateur
    response_schema = FormateurResponse
    libelle = "Formateur"
    nom_objet = "un formateur"
    champs_recherche = ("nom", "prenom", "email")
    ordre_defaut = ("nom", "prenom")

    def _decrire(self, row) -> str:
        return f"{row.prenom} {row.nom}"


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# PARTICIPANT (modifiable uniquement par son créateur)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

CHAMPS_INSTITUTION = (
    "type_institution", "nom_institution", "rue", "code_postal", "ville",
    "telephone_institution", "adresse_facturation",
)


class ParticipantService(SoftDeleteService):
    model = Participant
    response_schema = ParticipantResponse
    libelle = "Participant"
    nom_objet = "un participant"
    champs_recherche = ("nom", "prenom", "email", "nom_institution")
    ordre_defaut = ("nom", "prenom")
    proprietaire_requis = True

    def _decrire(self, row) -> str:
        return f"{row.prenom} {row.nom}"

    @staticmethod
    def _vider_institution(valeurs: Dict[str, Any]) -> Dict[str, Any]:
        for champ in CHAMPS_INSTITUTION:
            valeurs[champ] = None
        return valeurs

    async def _preparer_creation(self, data: ParticipantCreate) -> Dict[str, Any]:
        valeurs = data.model_dump()
        if not valeurs.get("is_responsable"):
            self._vider_institution(valeurs)
        return valeurs

    async def _preparer_modification(self, row, data: ParticipantUpdate) -> Dict[str, Any]:
        modifications = data.model_dump(exclude_unset=True)
        responsable = modifications.get("is_responsable", row.is_responsable)
        if responsable is None:
            modifications.pop("is_responsable", None)
            responsable = row.is_responsable
        if not responsable:
            self._vider_institution(modifications)
        return modifications


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# LIEU
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class LieuService(SoftDeleteService):
    model = Lieu
    response_schema = LieuResponse
    libelle = "Lieu"
    nom_objet = "un lieu"
    champs_recherche = ("nom", "ville", "code_postal")
    ordre_defaut = ("nom",)

    async def _verifier_contact(self, contact_id: Optional[int]):
        if contact_id is None:
            raise ValidationException("Veuillez sélectionner un contact responsable")
        result = await self.session.execute(
            select(Participant.id).where(
                Participant.id == contact_id,
                Participant.is_active.is_(True),
                Participant.is_responsable.is_(True),
            )
        )
        if result.scalar_one_or_none() is None:
            raise ValidationException("Le contact sélectionné doit être un participant responsable actif")

    async def _preparer_creation(self, data: LieuCreate) -> Dict[str, Any]:
        await self._verifier_contact(data.contact_id)
        return data.model_dump()

    async def _preparer_modification(self, row, data: LieuUpdate) -> Dict[str, Any]:
        modifications = data.model_dump(exclude_unset=True)
        if "contact_id" in modifications:
            await self._verifier_contact(modifications["contact_id"])
        if modifications.get("type") is None:
            modifications.pop("type", None)
        return modifications


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# FORMATION
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

CHAMPS_NON_DUPLIQUES = {"id", "date", "rating", "created_at", "updated_at", "created_by", "updated_by", "is_active"}


class FormationService(SoftDeleteService):
    model = Formation
    response_schema = FormationResponse
    libelle = "Formation"
    accord = "e"
    nom_objet = "une formation"
    champs_recherche = ("titre", "categorie")
    ordre_defaut = ("date",)

    def _decrire(self, row) -> str:
        return row.titre

    def _options(self) -> list:
        return [selectinload(Formation.lieu), selectinload(Formation.formateurs)]

    def _formateurs(self) -> RelationMaintainer:
        return RelationMaintainer(self.session, FormationFormateur, "formation_id", "formateur_id", hub=self.hub)

    def _participants(self) -> RelationMaintainer:
        return RelationMaintainer(self.session, FormationParticipant, "formation_id", "participant_id", hub=self.hub)

    async def _compter_participants(self, formation_ids: Iterable[int]) -> Dict[int, int]:
        ids = list(formation_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(FormationParticipant.formation_id, func.count())
            .where(FormationParticipant.formation_id.in_(ids), FormationParticipant.is_active.is_(True))
            .group_by(FormationParticipant.formation_id)
        )
        return {formation_id: count for formation_id, count in result.all()}

    async def _serialiser_liste(self, rows) -> List[FormationResponse]:
        comptes = await self._compter_participants(row.id for row in rows)
        return [
            FormationResponse.model_validate(row, from_attributes=True).model_copy(
                update={"participant_count": comptes.get(row.id, 0)}
            )
            for row in rows
        ]

    async def _serialiser(self, row) -> FormationResponse:
        # Recharger la formation avec ses relations pour éviter les erreurs de greenlet
        result = await self.session.execute(
            select(Formation).where(Formation.id == row.id).options(*self._options())
            .execution_options(populate_existing=True)
        )
        formation = result.scalar_one()
        return (await self._serialiser_liste([formation]))[0]

    async def _verifier_lieu(self, lieu_id: Optional[int]):
        if lieu_id is None:
            return
        result = await self.session.execute(
            select(Lieu.id).where(Lieu.id == lieu_id, Lieu.is_active.is_(True))
        )
        if result.scalar_one_or_none() is None:
            raise ValidationException(f"Le lieu {lieu_id} est introuvable ou inactif")

    async def _preparer_creation(self, data: FormationCreate) -> Dict[str, Any]:
        await self._verifier_lieu(data.lieu_id)
        valeurs = data.model_dump(exclude={"formateur_ids"})
        valeurs["rating"] = 0
        return valeurs

    async def _preparer_modification(self, row, data: FormationUpdate) -> Dict[str, Any]:
        modifications = data.model_dump(exclude_unset=True, exclude={"formateur_ids"})
        if "lieu_id" in modifications:
            await self._verifier_lieu(modifications["lieu_id"])
        for champ in ("titre", "date", "nombre_heures", "prix_htva", "type"):
            if champ in modifications and modifications[champ] is None:
                modifications.pop(champ)

        prix = appliquer_modifications_prix(
            {"prix_unitaire": row.prix_unitaire, "prix_total": row.prix_total}, modifications
        )
        if any(champ in modifications for champ in CHAMPS_PRIX):
            modifications.update(prix)
        return modifications

    async def _apres_creation(self, row, data: FormationCreate, owner_id: int):
        if data.formateur_ids:
            await self._formateurs().insert_all(row.id, data.formateur_ids, owner_id)

    async def _apres_modification(self, row, data: FormationUpdate, owner_id: int):
        if data.formateur_ids is not None:
            await self._formateurs().replace_all(row.id, data.formateur_ids, owner_id)

    async def modifier_prix(self, formation_id: int, champ: str, valeur: Optional[float], owner_id: Optional[int]) -> FormationResponse:
        """Saisie d'un seul champ de prix ; l'autre est vidé si la valeur n'est pas nulle."""
        return await self.update(formation_id, FormationUpdate(**{champ: valeur}), owner_id)

    async def modifier_rating(self, formation_id: int, rating: int, owner_id: Optional[int]) -> FormationResponse:
        async with self._action(self.table, "Modification", "Note mise à jour avec succès") as suivi:
            owner_id = self._require_owner(owner_id, "noter une formation")
            row = await self._get_row(formation_id, actif_seulement=True)
            avant = snapshot(row)
            row.rating = rating
            row.updated_by = owner_id
            row.updated_at = _maintenant()
            await self.commit()
            await self.refresh(row)
            logger.info(f"Note de la formation ID {formation_id} fixée à {rating}")
            await self._publier(EvenementChangementEnum.UPDATE, self.table, new=snapshot(row), old=avant)
            suivi.details = f"{row.titre} : {rating}"
            return await self._serialiser(row)

    async def dupliquer(self, formation_id: int, nouvelle_date: date, owner_id: Optional[int]) -> FormationResponse:
        async with self._action(self.table, "Duplication", "Formation dupliquée avec succès") as suivi:
            owner_id = self._require_owner(owner_id, "dupliquer une formation")
            source = await self._get_row(formation_id, actif_seulement=True)
            formateur_ids = await self._formateurs().child_ids(formation_id)

            valeurs = {k: v for k, v in snapshot(source).items() if k not in CHAMPS_NON_DUPLIQUES}
            copie = Formation(**valeurs, date=nouvelle_date, rating=0, created_by=owner_id, is_active=True)
            self.session.add(copie)
            await self.commit()
            await self.refresh(copie)
            logger.info(f"Formation ID {formation_id} dupliquée en ID {copie.id} au {nouvelle_date}")
            await self._publier(EvenementChangementEnum.INSERT, self.table, new=snapshot(copie))

            await self._formateurs().insert_all(copie.id, formateur_ids, owner_id)
            suivi.details = copie.titre
            return await self._serialiser(copie)

    async def participant_ids(self, formation_id: int) -> List[int]:
        async with self._action(self.table, "Lecture"):
            await self._get_row(formation_id)
            return await self._participants().child_ids(formation_id)

    async def remplacer_participants(self, formation_id: int, participant_ids: List[int], owner_id: Optional[int]) -> List[int]:
        async with self._action("formation_participants", "Modification", "Participants mis à jour avec succès") as suivi:
            owner_id = self._require_owner(owner_id, "modifier les participants d'une formation")
            await self._get_row(formation_id, actif_seulement=True)
            await self._participants().synchroniser(
                formation_id, participant_ids, owner_id,
                reactivation={"statut": StatutInscriptionEnum.PENDING},
            )
            suivi.details = f"{len(participant_ids)} participant(s)"
            return await self._participants().child_ids(formation_id)

    async def get_by_lieu(
        self,
        lieu_id: int,
        periode: PeriodeEnum = PeriodeEnum.FUTURE,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 10,
    ) -> Tuple[List[FormationResponse], int]:
        aujourd_hui = date.today()
        if periode == PeriodeEnum.FUTURE:
            plage, ordre = Plage(debut=aujourd_hui), "date"
        else:
            plage, ordre = Plage(fin=aujourd_hui), "-date"
        return await self.get_all(
            search=search,
            filters={"lieu_id": lieu_id, "date": plage},
            order_by=ordre,
            skip=skip,
            limit=limit,
            search_fields=("titre",),
        )


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# INSCRIPTIONS (formation ↔ participant)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class InscriptionService(BaseService):
    table = "formation_participants"

    @staticmethod
    def _reponse(lien: FormationParticipant, participant: Participant) -> InscriptionResponse:
        return InscriptionResponse(
            formation_id=lien.formation_id,
            participant_id=lien.participant_id,
            statut=lien.statut,
            participant=ParticipantResponse.model_validate(participant, from_attributes=True),
        )

    async def _verifier_formation(self, formation_id: int):
        result = await self.session.execute(
            select(Formation.id).where(Formation.id == formation_id, Formation.is_active.is_(True))
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundException(f"Formation avec ID {formation_id} non trouvée.")

    async def _lien(self, formation_id: int, participant_id: int) -> Optional[FormationParticipant]:
        result = await self.session.execute(
            select(FormationParticipant)
            .where(
                FormationParticipant.formation_id == formation_id,
                FormationParticipant.participant_id == participant_id,
            )
            .options(selectinload(FormationParticipant.participant))
        )
        return result.scalar_one_or_none()

    async def _lien_actif(self, formation_id: int, participant_id: int) -> FormationParticipant:
        lien = await self._lien(formation_id, participant_id)
        if lien is None or not lien.is_active:
            raise NotFoundException("Ce participant n'est pas inscrit à cette formation.")
        return lien

    async def lister(
        self,
        formation_id: int,
        statut: Optional[StatutInscriptionEnum] = None,
        search: Optional[str] = None,
    ) -> List[InscriptionResponse]:
        logger.info(f"Récupération des inscrits de la formation ID {formation_id}")
        async with self._action(self.table, "Lecture"):
            query = (
                select(FormationParticipant, Participant)
                .join(Participant, Participant.id == FormationParticipant.participant_id)
                .where(FormationParticipant.formation_id == formation_id, FormationParticipant.is_active.is_(True))
            )
            if statut is not None:
                query = query.where(FormationParticipant.statut == statut)
            if search and search.strip():
                motif = f"%{search.strip()}%"
                query = query.where(or_(
                    Participant.nom.ilike(motif),
                    Participant.prenom.ilike(motif),
                    Participant.email.ilike(motif),
                    Participant.nom_institution.ilike(motif),
                ))
            result = await self.session.execute(query.order_by(Participant.nom, Participant.prenom))
            return [self._reponse(lien, participant) for lien, participant in result.all()]

    async def inscrire(
        self,
        formation_id: int,
        participant_id: int,
        owner_id: Optional[int],
        statut: StatutInscriptionEnum = StatutInscriptionEnum.PENDING,
    ) -> InscriptionResponse:
        async with self._action(self.table, "Inscription", "Participant inscrit avec succès") as suivi:
            owner_id = self._require_owner(owner_id, "inscrire un participant")
            await self._verifier_formation(formation_id)
            participant = (await self.session.execute(
                select(Participant).where(Participant.id == participant_id, Participant.is_active.is_(True))
            )).scalar_one_or_none()
            if participant is None:
                raise ValidationException(f"Le participant {participant_id} est introuvable ou inactif")

            lien = await self._lien(formation_id, participant_id)
            if lien is not None and lien.is_active:
                raise ValidationException("Ce participant est déjà inscrit à cette formation")

            if lien is None:
                lien = FormationParticipant(
                    formation_id=formation_id, participant_id=participant_id,
                    statut=statut, created_by=owner_id, is_active=True,
                )
                self.session.add(lien)
                evenement, avant = EvenementChangementEnum.INSERT, None
            else:
                avant = snapshot(lien)
                lien.is_active = True
                lien.statut = statut
                lien.updated_by = owner_id
                lien.updated_at = _maintenant()
                evenement = EvenementChangementEnum.UPDATE

            await self.commit()
            await self.refresh(lien)
            logger.info(f"Participant {participant_id} inscrit à la formation {formation_id}")
            await self._publier(evenement, self.table, new=snapshot(lien), old=avant)
            suivi.details = f"{participant.prenom} {participant.nom}"
            return self._reponse(lien, participant)

    async def changer_statut(
        self, formation_id: int, participant_id: int, statut: StatutInscriptionEnum, owner_id: Optional[int]
    ) -> InscriptionResponse:
        async with self._action(self.table, "Modification", "Statut mis à jour avec succès") as suivi:
            owner_id = self._require_owner(owner_id, "modifier une inscription")
            lien = await self._lien_actif(formation_id, participant_id)
            avant = snapshot(lien)
            lien.statut = statut
            lien.updated_by = owner_id
            lien.updated_at = _maintenant()
            await self.commit()
            await self.refresh(lien)
            logger.info(f"Inscription {formation_id}/{participant_id} passée au statut {statut.value}")
            await self._publier(EvenementChangementEnum.UPDATE, self.table, new=snapshot(lien), old=avant)
            suivi.details = statut.value
            participant = (await self.session.execute(
                select(Participant).where(Participant.id == participant_id)
            )).scalar_one()
            return self._reponse(lien, participant)

    async def desinscrire(self, formation_id: int, participant_id: int, owner_id: Optional[int]) -> None:
        async with self._action(self.table, "Désinscription", "Participant désinscrit avec succès") as suivi:
            owner_id = self._require_owner(owner_id, "désinscrire un participant")
            lien = await self._lien_actif(formation_id, participant_id)
            avant = snapshot(lien)
            lien.is_active = False
            lien.updated_by = owner_id
            lien.updated_at = _maintenant()
            await self.commit()
            await self.refresh(lien)
            logger.info(f"Participant {participant_id} désinscrit de la formation {formation_id}")
            await self._publier(EvenementChangementEnum.UPDATE, self.table, new=snapshot(lien), old=avant)
            suivi.details = str(participant_id)

    async def candidats(self, formation_id: int, term: str, limit: int = 5) -> List[ParticipantLight]:
        """Participants actifs non encore inscrits à la formation."""
        inscrits = select(FormationParticipant.participant_id).where(
            FormationParticipant.formation_id == formation_id,
            FormationParticipant.is_active.is_(True),
        )
        motif = f"%{term.strip()}%"
        result = await self.session.execute(
            select(Participant)
            .where(
                Participant.is_active.is_(True),
                Participant.id.not_in(inscrits),
                or_(Participant.nom.ilike(motif), Participant.prenom.ilike(motif), Participant.email.ilike(motif)),
            )
            .order_by(Participant.nom, Participant.prenom)
            .limit(limit)
        )
        return [ParticipantLight.model_validate(p, from_attributes=True) for p in result.scalars().all()]


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# PARAMÈTRE
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class ParametreService(SoftDeleteService):
    model = Parametre
    response_schema = ParametreResponse
    libelle = "Paramètre"
    nom_objet = "un paramètre"
    champs_recherche = ("code", "libelle")
    ordre_defaut = ("type", "ordre")
    proprietaire_requis = True

    def _decrire(self, row) -> str:
        return row.libelle

    async def _verifier_unicite(self, type: TypeParametreEnum, code: str, exclure_id: Optional[int] = None):
        query = select(Parametre.id).where(
            Parametre.type == type,
            Parametre.code == code,
            Parametre.is_active.is_(True),
        )
        if exclure_id is not None:
            query = query.where(Parametre.id != exclure_id)
        if (await self.session.execute(query)).first() is not None:
            raise ValidationException("Un paramètre avec ce code existe déjà pour ce type")

    async def _preparer_creation(self, data: ParametreCreate) -> Dict[str, Any]:
        valeurs = data.model_dump()
        valeurs["code"] = (data.code or "").strip() or generer_code(data.libelle)
        if not valeurs["code"]:
            raise ValidationException("Impossible de générer un code à partir de ce libellé")
        await self._verifier_unicite(data.type, valeurs["code"])
        return valeurs

    async def _preparer_modification(self, row, data: ParametreUpdate) -> Dict[str, Any]:
        modifications = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        if "code" in modifications:
            modifications["code"] = modifications["code"].strip() or generer_code(modifications.get("libelle", row.libelle))
        type = modifications.get("type", row.type)
        code = modifications.get("code", row.code)
        if type != row.type or code != row.code:
            await self._verifier_unicite(type, code, exclure_id=row.id)
        return modifications

    async def libelles(self, type: TypeParametreEnum) -> List[ParametreResponse]:
        rows, _ = await self.get_all(filters={"type": type}, order_by="ordre", limit=settings.PAGE_SIZE_MAX)
        return rows


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# EMAIL
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class EmailService(SoftDeleteService):
    model = Email
    response_schema = EmailResponse
    libelle = "Email"
    nom_objet = "un email"
    champs_recherche = ("subject", "to_email", "from_email")
    ordre_defaut = ("-created_at",)

    def _decrire(self, row) -> str:
        return row.subject or row.from_email

    async def _serialiser_liste(self, rows) -> List[EmailLight]:
        return [EmailLight.model_validate(row, from_attributes=True) for row in rows]

    async def generer_reponse(self, email_id: int, client: WebhookClient) -> ReponseIA:
        """Demande au webhook IA une proposition de réponse au corps de l'email."""
        async with self._action("Emails", "Génération", "Réponse générée avec succès", details="IA"):
            row = await self._get_row(email_id, actif_seulement=True)
            texte = html_vers_texte(row.body or "")
            if not texte:
                raise ValidationException("Cet email ne contient aucun texte à traiter")
            logger.info(f"Génération d'une réponse IA pour l'email ID {email_id}")
            return await client.ask(texte)

    async def enregistrer_reponse(self, email_id: int, response: str, owner_id: Optional[int]) -> EmailResponse:
        async with self._action(self.table, "Réponse", "Réponse enregistrée avec succès") as suivi:
            owner_id = self._require_owner(owner_id, "enregistrer une réponse")
            row = await self._get_row(email_id, actif_seulement=True)
            avant = snapshot(row)
            row.response = response
            row.response_at = _maintenant()
            row.response_by = owner_id
            row.updated_by = owner_id
            row.updated_at = _maintenant()
            await self.commit()
            await self.refresh(row)
            logger.info(f"Réponse enregistrée pour l'email ID {email_id}")
            await self._publier(EvenementChangementEnum.UPDATE, self.table, new=snapshot(row), old=avant)
            suivi.details = self._decrire(row)
            return EmailResponse.model_validate(row, from_attributes=True)


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# FACTURE (suppression physique, suivie en temps réel)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class FactureService(BaseService):
    table = FactureDemi.__tablename__

    async def _get_row(self, facture_id: int) -> FactureDemi:
        facture = (await self.session.execute(
            select(FactureDemi).where(FactureDemi.id == facture_id)
        )).scalar_one_or_none()
        if facture is None:
            logger.warning(f"Facture ID {facture_id} non trouvée")
            raise NotFoundException(f"Facture avec ID {facture_id} non trouvée.")
        return facture

    async def get_all(self, skip: int = 0, limit: int = 100) -> Tuple[List[FactureResponse], int]:
        limit = max(0, min(limit, settings.PAGE_SIZE_MAX))
        logger.info(f"Récupération des factures (skip={skip}, limit={limit})")
        async with self._action(self.table, "Lecture"):
            total = (await self.session.execute(select(func.count()).select_from(FactureDemi))).scalar_one()
            result = await self.session.execute(
                select(FactureDemi).order_by(FactureDemi.created_at.desc(), FactureDemi.id.desc()).offset(skip).limit(limit)
            )
            return [FactureResponse.model_validate(f, from_attributes=True) for f in result.scalars().all()], total

    async def create(self, data: FactureCreate, owner_id: Optional[int]) -> FactureResponse:
        async with self._action(self.table, "Création", "Facture créée avec succès") as suivi:
            self._require_owner(owner_id, "créer une facture")
            facture = FactureDemi(**data.model_dump())
            self.session.add(facture)
            await self.commit()
            await self.refresh(facture)
            logger.info(f"Facture créée avec ID {facture.id}")
            await self._publier(EvenementChangementEnum.INSERT, self.table, new=snapshot(facture))
            suivi.details = facture.nfacture
            return FactureResponse.model_validate(facture, from_attributes=True)

    async def update(self, facture_id: int, data: FactureUpdate, owner_id: Optional[int]) -> FactureResponse:
        async with self._action(self.table, "Modification", "Facture mise à jour avec succès") as suivi:
            self._require_owner(owner_id, "modifier une facture")
            facture = await self._get_row(facture_id)
            avant = snapshot(facture)
            for key, value in data.model_dump(exclude_unset=True).items():
                if value is not None:
                    setattr(facture, key, value)
            await self.commit()
            await self.refresh(facture)
            logger.info(f"Facture ID {facture_id} mise à jour")
            await self._publier(EvenementChangementEnum.UPDATE, self.table, new=snapshot(facture), old=avant)
            suivi.details = facture.nfacture
            return FactureResponse.model_validate(facture, from_attributes=True)

    async def delete(self, facture_id: int, owner_id: Optional[int]) -> None:
        async with self._action(self.table, "Suppression", "Facture supprimée avec succès") as suivi:
            self._require_owner(owner_id, "supprimer une facture")
            facture = await self._get_row(facture_id)
            avant = snapshot(facture)
            await self.session.delete(facture)
            await self.commit()
            logger.info(f"Facture ID {facture_id} supprimée")
            await self._publier(EvenementChangementEnum.DELETE, self.table, old=avant)
            suivi.details = avant["nfacture"]


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# RECHERCHE (listes déroulantes et recherche globale)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class RechercheService(BaseService):
    @staticmethod
    def _motif(term: str) -> str:
        return f"%{term.strip()}%"

    async def formateurs(self, term: str, limit: int = 5) -> List[FormateurLight]:
        motif = self._motif(term)
        result = await self.session.execute(
            select(Formateur)
            .where(
                Formateur.is_active.is_(True),
                or_(Formateur.nom.ilike(motif), Formateur.prenom.ilike(motif), Formateur.email.ilike(motif)),
            )
            .order_by(Formateur.nom, Formateur.prenom)
            .limit(limit)
        )
        return [FormateurLight.model_validate(f, from_attributes=True) for f in result.scalars().all()]

    async def lieux(self, term: str, limit: int = 5) -> List[LieuLight]:
        result = await self.session.execute(
            select(Lieu)
            .where(Lieu.is_active.is_(True), Lieu.nom.ilike(self._motif(term)))
            .order_by(Lieu.nom)
            .limit(limit)
        )
        return [LieuLight.model_validate(lieu, from_attributes=True) for lieu in result.scalars().all()]

    async def contacts(self, term: str, limit: int = 5) -> List[ParticipantLight]:
        motif = self._motif(term)
        result = await self.session.execute(
            select(Participant)
            .where(
                Participant.is_active.is_(True),
                Participant.is_responsable.is_(True),
                or_(
                    Participant.nom.ilike(motif),
                    Participant.prenom.ilike(motif),
                    Participant.email.ilike(motif),
                    Participant.nom_institution.ilike(motif),
                ),
            )
            .order_by(Participant.nom, Participant.prenom)
            .limit(limit)
        )
        return [ParticipantLight.model_validate(p, from_attributes=True) for p in result.scalars().all()]

    async def globale(self, term: str, limit: int = 3) -> List[ResultatRecherche]:
        motif = self._motif(term)
        resultats: List[ResultatRecherche] = []

        formations = (await self.session.execute(
            select(Formation)
            .where(Formation.is_active.is_(True), or_(Formation.titre.ilike(motif), Formation.categorie.ilike(motif)))
            .order_by(Formation.date.desc())
            .limit(limit)
        )).scalars().all()
        for f in formations:
            resultats.append(ResultatRecherche(
                type="formation", id=f.id, title=f.titre, subtitle=f.categorie, date=f.date,
                path=f"/formations/liste?id={f.id}",
            ))

        formateurs = (await self.session.execute(
            select(Formateur)
            .where(
                Formateur.is_active.is_(True),
                or_(Formateur.nom.ilike(motif), Formateur.prenom.ilike(motif), Formateur.email.ilike(motif)),
            )
            .order_by(Formateur.nom)
            .limit(limit)
        )).scalars().all()
        for f in formateurs:
            resultats.append(ResultatRecherche(
                type="formateur", id=f.id, title=f"{f.prenom} {f.nom}", subtitle=f.email,
                path=f"/formateurs?id={f.id}",
            ))

        lieux = (await self.session.execute(
            select(Lieu)
            .where(
                Lieu.is_active.is_(True),
                or_(Lieu.nom.ilike(motif), Lieu.ville.ilike(motif), Lieu.code_postal.ilike(motif)),
            )
            .order_by(Lieu.nom)
            .limit(limit)
        )).scalars().all()
        for lieu in lieux:
            resultats.append(ResultatRecherche(
                type="lieu", id=lieu.id, title=lieu.nom,
                subtitle=" ".join(p for p in (lieu.code_postal, lieu.ville) if p) or None,
                path=f"/lieux?id={lieu.id}",
            ))
        return resultats


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# CARTE (géocodage du lieu et trajets des formateurs)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

def _adresse_complete(*parties: Optional[str]) -> str:
    return ", ".join(p.strip() for p in parties if p and p.strip())


class CarteService(BaseService):
    async def carte_formation(self, formation_id: int, geo: GeoService) -> CarteFormation:
        async with self._action("formations", "Lecture"):
            formation = (await self.session.execute(
                select(Formation)
                .where(Formation.id == formation_id)
                .options(selectinload(Formation.lieu), selectinload(Formation.formateurs))
            )).scalar_one_or_none()
            if formation is None or not formation.is_active:
                raise NotFoundException(f"Formation avec ID {formation_id} non trouvée.")

        lieu = formation.lieu
        adresse_lieu = None
        if lieu is not None and lieu.is_active:
            adresse_lieu = _adresse_complete(lieu.adresse, " ".join(p for p in (lieu.code_postal, lieu.ville) if p))
        coordonnees_lieu = await geo.geocode(adresse_lieu) if adresse_lieu else None
        if coordonnees_lieu is None:
            logger.info(f"Carte indisponible pour la formation ID {formation_id}")

        formateurs: List[CarteFormateur] = []
        for formateur in formation.formateurs:
            if not formateur.is_active:
                continue
            adresse = _adresse_complete(
                formateur.adresse,
                " ".join(p for p in (formateur.code_postal, formateur.ville) if p),
            )
            coordonnees = await geo.geocode(adresse) if adresse else None
            itineraire = None
            if coordonnees is not None and coordonnees_lieu is not None:
                itineraire = await geo.route(coordonnees, coordonnees_lieu)
            formateurs.append(CarteFormateur(
                formateur=FormateurLight.model_validate(formateur, from_attributes=True),
                coordonnees=coordonnees,
                itineraire=itineraire,
            ))

        return CarteFormation(
            formation_id=formation_id,
            carte_disponible=coordonnees_lieu is not None,
            coordonnees=coordonnees_lieu,
            formateurs=formateurs,
        )


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# ASSISTANT
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class AssistantService(BaseService):
    async def demander(self, message: str, client: WebhookClient) -> AssistantResponse:
        async with self._action("assistant", "Assistant"):
            logger.info("Question envoyée à l'assistant")
            reponse = await client.ask(message)
            return AssistantResponse(message=message, reponse=reponse.texte, timestamp=_maintenant())


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# UTILISATEUR
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class UserService(BaseService):
    async def create(self, data: UtilisateurCreate) -> UtilisateurResponse:
        logger.info(f"Création du compte {data.email}")
        existing = (await self.session.execute(
            select(Utilisateur).where(Utilisateur.email == data.email)
        )).scalar_one_or_none()
        if existing:
            raise RemoteStoreException("Un utilisateur avec cet email existe déjà.", status_code=409)

        user = Utilisateur(
            email=data.email, nom=data.nom, prenom=data.prenom,
            password=hash_password(data.password), actif=True,
        )
        self.session.add(user)
        await self.commit()
        await self.refresh(user)
        logger.info(f"Utilisateur créé avec ID {user.id}")
        return UtilisateurResponse.model_validate(user, from_attributes=True)

    async def authenticate_user(self, email: str, password: str) -> Optional[Utilisateur]:
        """Authentifie un utilisateur avec son email et mot de passe"""
        logger.info(f"Tentative d'authentification pour l'email: {email}")
        user = (await self.session.execute(
            select(Utilisateur).where(Utilisateur.email == email)
        )).scalar_one_or_none()

        if not user:
            logger.warning(f"Tentative d'authentification avec un email inexistant: {email}")
            return None
        if not verify_password(password, user.password):
            logger.warning(f"Mot de passe incorrect pour l'utilisateur: {email}")
            return None
        if not user.actif:
            logger.warning(f"Tentative d'authentification avec un compte inactif: {email}")
            return None

        user.last_login = _maintenant()
        await self.commit()
        await self.refresh(user)
        logger.info(f"Authentification réussie pour l'utilisateur: {email}")
        return user

    async def login_user(self, email: str, password: str) -> LoginResponse:
        user = await self.authenticate_user(email, password)
        if not user:
            raise TemisException("Email ou mot de passe incorrect", status_code=401)

        access_token = create_access_token(data={"sub": user.email, "user_id": user.id})
        return LoginResponse(
            access_token=access_token,
            token_type="bearer",
            user=UtilisateurResponse.model_validate(user, from_attributes=True),
        )
