import asyncio
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from temis.api.model import Utilisateur
from temis.api.schema import (
    AssistantRequest, AssistantResponse, CarteFormation,
    EmailLight, EmailReponseUpdate, EmailResponse,
    FactureCreate, FactureResponse, FactureUpdate,
    FormateurCreate, FormateurResponse, FormateurUpdate,
    FormationCreate, FormationDuplication, FormationPrixUpdate, FormationRatingUpdate,
    FormationResponse, FormationUpdate,
    InscriptionCreate, InscriptionResponse, InscriptionStatutUpdate,
    LieuCreate, LieuResponse, LieuUpdate, LoginRequest, LoginResponse, Notification, Page,
    ParametreCreate, ParametreResponse, ParametreUpdate,
    ParticipantCreate, ParticipantResponse, ParticipantsSelection, ParticipantUpdate,
    ReponseIA, UtilisateurCreate, UtilisateurResponse
)
from temis.api.security import get_current_user, get_current_user_id
from temis.api.service import (
    AssistantService, CarteService, EmailService, FactureService, FormateurService, FormationService,
    InscriptionService, LieuService, ParametreService, ParticipantService, Plage, RechercheService, UserService
)
from temis.util.db.database import get_async_db
from temis.util.db.realtime import RealtimeHub
from temis.util.db.setting import settings
from temis.util.external.geo import GeoService, get_geo_service
from temis.util.external.webhook import WebhookClient, get_chatbot_webhook, get_response_webhook
from temis.util.helper.enum import CibleRechercheEnum, PeriodeEnum, StatutInscriptionEnum, TypeLieuEnum, TypeParametreEnum
from temis.util.helper.exceptions import ValidationException
from temis.util.notification.bus import NotificationBus
from temis.util.notification.listener import RealtimeChangeListener
from temis.util.search.debounce import DebouncedSearch

logger = logging.getLogger(__name__)


# ============================
# Dépendances communes
# ============================
def get_notification_bus(connection: HTTPConnection) -> NotificationBus:
    return connection.app.state.notifications

def get_realtime_hub(connection: HTTPConnection) -> RealtimeHub:
    return connection.app.state.realtime


class Contexte:
    """Session, bus de notifications, flux temps réel et utilisateur courant d'une requête."""

    def __init__(
        self,
        db: AsyncSession = Depends(get_async_db),
        bus: NotificationBus = Depends(get_notification_bus),
        hub: RealtimeHub = Depends(get_realtime_hub),
        owner_id: Optional[int] = Depends(get_current_user_id),
    ):
        self.db = db
        self.bus = bus
        self.hub = hub
        self.owner_id = owner_id

    def service(self, service_class):
        return service_class(self.db, self.bus, self.hub)


# ============================
# Router Authentification
# ============================
auth = APIRouter(
    prefix="/auth",
    tags=["auth"],
)

@auth.post(
    "/login",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    summary="Connexion",
    description="Authentifie un utilisateur par email et mot de passe et retourne un jeton JWT."
)
async def login(
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_async_db)
):
    service = UserService(db)
    return await service.login_user(credentials.email, credentials.password)

@auth.post(
    "/register",
    response_model=UtilisateurResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer un compte",
    description="Crée un compte utilisateur de l'équipe administrative."
)
async def register(
    user_data: UtilisateurCreate,
    db: AsyncSession = Depends(get_async_db)
):
    service = UserService(db)
    return await service.create(user_data)

@auth.get(
    "/me",
    response_model=Optional[UtilisateurResponse],
    status_code=status.HTTP_200_OK,
    summary="Utilisateur courant",
    description="Retourne l'utilisateur du jeton, ou null sans jeton."
)
async def me(current_user: Optional[Utilisateur] = Depends(get_current_user)):
    return current_user


# ============================
# Router Notifications
# ============================
notifications = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
)

@notifications.get(
    "",
    response_model=List[Notification],
    status_code=status.HTTP_200_OK,
    summary="Notifications actives",
    description="Liste des notifications non expirées, dans l'ordre d'ajout."
)
async def get_notifications(bus: NotificationBus = Depends(get_notification_bus)):
    return bus.active()

@notifications.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Fermer une notification",
    description="Retire une notification ; sans effet si elle n'existe plus."
)
async def dismiss_notification(notification_id: str, bus: NotificationBus = Depends(get_notification_bus)):
    bus.dismiss(notification_id)


# ============================
# Router Formateurs
# ============================
formateurs = APIRouter(
    prefix="/formateurs",
    tags=["formateurs"],
)

@formateurs.post(
    "",
    response_model=FormateurResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer un formateur",
    description="Crée un formateur actif appartenant à l'utilisateur connecté."
)
async def create_formateur(formateur_data: FormateurCreate, ctx: Contexte = Depends()):
    return await ctx.service(FormateurService).create(formateur_data, ctx.owner_id)

@formateurs.get(
    "",
    response_model=Page[FormateurResponse],
    status_code=status.HTTP_200_OK,
    summary="Lister les formateurs",
    description="Liste paginée des formateurs actifs, recherche sur nom, prénom et email."
)
async def get_all_formateurs(
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1),
    include_inactive: bool = False,
    ctx: Contexte = Depends(),
):
    items, total = await ctx.service(FormateurService).get_all(
        search=search, skip=skip, limit=limit, include_inactive=include_inactive
    )
    return Page(items=items, total=total, skip=skip, limit=limit)

@formateurs.get(
    "/{formateur_id}",
    response_model=FormateurResponse,
    status_code=status.HTTP_200_OK,
    summary="Récupérer un formateur par ID"
)
async def get_formateur(formateur_id: int, ctx: Contexte = Depends()):
    return await ctx.service(FormateurService).get_by_id(formateur_id)

@formateurs.put(
    "/{formateur_id}",
    response_model=FormateurResponse,
    status_code=status.HTTP_200_OK,
    summary="Mettre à jour un formateur"
)
async def update_formateur(formateur_id: int, formateur_data: FormateurUpdate, ctx: Contexte = Depends()):
    return await ctx.service(FormateurService).update(formateur_id, formateur_data, ctx.owner_id)

@formateurs.delete(
    "/{formateur_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Supprimer un formateur",
    description="Suppression logique : le formateur est désactivé."
)
async def delete_formateur(formateur_id: int, ctx: Contexte = Depends()):
    await ctx.service(FormateurService).soft_delete(formateur_id, ctx.owner_id)


# ============================
# Router Participants
# ============================
participants = APIRouter(
    prefix="/participants",
    tags=["participants"],
)

@participants.post(
    "",
    response_model=ParticipantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer un participant",
    description="Crée un participant. Les champs institution ne sont conservés que pour un responsable."
)
async def create_participant(participant_data: ParticipantCreate, ctx: Contexte = Depends()):
    return await ctx.service(ParticipantService).create(participant_data, ctx.owner_id)

@participants.get(
    "",
    response_model=Page[ParticipantResponse],
    status_code=status.HTTP_200_OK,
    summary="Lister les participants"
)
async def get_all_participants(
    search: Optional[str] = None,
    is_responsable: Optional[bool] = None,
    type_institution: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1),
    include_inactive: bool = False,
    ctx: Contexte = Depends(),
):
    items, total = await ctx.service(ParticipantService).get_all(
        search=search,
        filters={"is_responsable": is_responsable, "type_institution": type_institution},
        skip=skip, limit=limit, include_inactive=include_inactive,
    )
    return Page(items=items, total=total, skip=skip, limit=limit)

@participants.get(
    "/{participant_id}",
    response_model=ParticipantResponse,
    status_code=status.HTTP_200_OK,
    summary="Récupérer un participant par ID"
)
async def get_participant(participant_id: int, ctx: Contexte = Depends()):
    return await ctx.service(ParticipantService).get_by_id(participant_id)

@participants.put(
    "/{participant_id}",
    response_model=ParticipantResponse,
    status_code=status.HTTP_200_OK,
    summary="Mettre à jour un participant",
    description="Réservé à l'utilisateur qui a créé le participant."
)
async def update_participant(participant_id: int, participant_data: ParticipantUpdate, ctx: Contexte = Depends()):
    return await ctx.service(ParticipantService).update(participant_id, participant_data, ctx.owner_id)

@participants.delete(
    "/{participant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Supprimer un participant",
    description="Suppression logique, réservée à l'utilisateur qui a créé le participant."
)
async def delete_participant(participant_id: int, ctx: Contexte = Depends()):
    await ctx.service(ParticipantService).soft_delete(participant_id, ctx.owner_id)


# ============================
# Router Lieux
# ============================
lieux = APIRouter(
    prefix="/lieux",
    tags=["lieux"],
)

@lieux.post(
    "",
    response_model=LieuResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer un lieu",
    description="Crée un lieu. Un contact responsable actif est obligatoire."
)
async def create_lieu(lieu_data: LieuCreate, ctx: Contexte = Depends()):
    return await ctx.service(LieuService).create(lieu_data, ctx.owner_id)

@lieux.get(
    "",
    response_model=Page[LieuResponse],
    status_code=status.HTTP_200_OK,
    summary="Lister les lieux"
)
async def get_all_lieux(
    search: Optional[str] = None,
    type: Optional[TypeLieuEnum] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1),
    include_inactive: bool = False,
    ctx: Contexte = Depends(),
):
    items, total = await ctx.service(LieuService).get_all(
        search=search, filters={"type": type}, skip=skip, limit=limit, include_inactive=include_inactive,
    )
    return Page(items=items, total=total, skip=skip, limit=limit)

@lieux.get(
    "/{lieu_id}",
    response_model=LieuResponse,
    status_code=status.HTTP_200_OK,
    summary="Récupérer un lieu par ID"
)
async def get_lieu(lieu_id: int, ctx: Contexte = Depends()):
    return await ctx.service(LieuService).get_by_id(lieu_id)

@lieux.get(
    "/{lieu_id}/formations",
    response_model=Page[FormationResponse],
    status_code=status.HTTP_200_OK,
    summary="Formations d'un lieu",
    description="Formations à venir ou passées d'un lieu, recherche sur le titre, pagination par plage."
)
async def get_formations_lieu(
    lieu_id: int,
    periode: PeriodeEnum = PeriodeEnum.FUTURE,
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(10, ge=1),
    ctx: Contexte = Depends(),
):
    items, total = await ctx.service(FormationService).get_by_lieu(
        lieu_id, periode=periode, search=search, skip=skip, limit=limit
    )
    return Page(items=items, total=total, skip=skip, limit=limit)

@lieux.put(
    "/{lieu_id}",
    response_model=LieuResponse,
    status_code=status.HTTP_200_OK,
    summary="Mettre à jour un lieu"
)
async def update_lieu(lieu_id: int, lieu_data: LieuUpdate, ctx: Contexte = Depends()):
    return await ctx.service(LieuService).update(lieu_id, lieu_data, ctx.owner_id)

@lieux.delete(
    "/{lieu_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Supprimer un lieu",
    description="Suppression logique : le lieu est désactivé."
)
async def delete_lieu(lieu_id: int, ctx: Contexte = Depends()):
    await ctx.service(LieuService).soft_delete(lieu_id, ctx.owner_id)


# ============================
# Router Formations
# ============================
formations = APIRouter(
    prefix="/formations",
    tags=["formations"],
)

@formations.post(
    "",
    response_model=FormationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer une formation",
    description="Crée une formation puis associe les formateurs sélectionnés. Prix unitaire et prix total sont exclusifs."
)
async def create_formation(formation_data: FormationCreate, ctx: Contexte = Depends()):
    return await ctx.service(FormationService).create(formation_data, ctx.owner_id)

@formations.get(
    "",
    response_model=Page[FormationResponse],
    status_code=status.HTTP_200_OK,
    summary="Lister les formations",
    description="Liste paginée des formations actives avec lieu, formateurs et nombre d'inscrits."
)
async def get_all_formations(
    search: Optional[str] = None,
    categorie: Optional[str] = None,
    lieu_id: Optional[int] = None,
    date_debut: Optional[date] = None,
    date_fin: Optional[date] = None,
    order_by: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1),
    include_inactive: bool = False,
    ctx: Contexte = Depends(),
):
    filters = {"categorie": categorie, "lieu_id": lieu_id}
    if date_debut or date_fin:
        filters["date"] = Plage(date_debut, date_fin)
    items, total = await ctx.service(FormationService).get_all(
        search=search, filters=filters, order_by=order_by,
        skip=skip, limit=limit, include_inactive=include_inactive,
    )
    return Page(items=items, total=total, skip=skip, limit=limit)

@formations.get(
    "/{formation_id}",
    response_model=FormationResponse,
    status_code=status.HTTP_200_OK,
    summary="Récupérer une formation par ID"
)
async def get_formation(formation_id: int, ctx: Contexte = Depends()):
    return await ctx.service(FormationService).get_by_id(formation_id)

@formations.put(
    "/{formation_id}",
    response_model=FormationResponse,
    status_code=status.HTTP_200_OK,
    summary="Mettre à jour une formation",
    description="Mise à jour partielle. Si formateur_ids est fourni, les liaisons sont entièrement remplacées."
)
async def update_formation(formation_id: int, formation_data: FormationUpdate, ctx: Contexte = Depends()):
    return await ctx.service(FormationService).update(formation_id, formation_data, ctx.owner_id)

@formations.patch(
    "/{formation_id}/prix",
    response_model=FormationResponse,
    status_code=status.HTTP_200_OK,
    summary="Saisir un prix",
    description="Renseigne le prix unitaire ou le prix total ; une valeur non nulle vide l'autre champ."
)
async def update_formation_prix(formation_id: int, prix_data: FormationPrixUpdate, ctx: Contexte = Depends()):
    return await ctx.service(FormationService).modifier_prix(formation_id, prix_data.champ, prix_data.valeur, ctx.owner_id)

@formations.patch(
    "/{formation_id}/rating",
    response_model=FormationResponse,
    status_code=status.HTTP_200_OK,
    summary="Noter une formation",
    description="Enregistre la note de satisfaction (0 à 100) et retourne la valeur stockée."
)
async def update_formation_rating(formation_id: int, rating_data: FormationRatingUpdate, ctx: Contexte = Depends()):
    return await ctx.service(FormationService).modifier_rating(formation_id, rating_data.rating, ctx.owner_id)

@formations.post(
    "/{formation_id}/dupliquer",
    response_model=FormationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Dupliquer une formation",
    description="Copie la formation et ses formateurs à une nouvelle date, note remise à zéro."
)
async def dupliquer_formation(formation_id: int, duplication: FormationDuplication, ctx: Contexte = Depends()):
    return await ctx.service(FormationService).dupliquer(formation_id, duplication.date, ctx.owner_id)

@formations.get(
    "/{formation_id}/carte",
    response_model=CarteFormation,
    status_code=status.HTTP_200_OK,
    summary="Carte d'une formation",
    description="Coordonnées du lieu et, pour chaque formateur, distance routière et tracé. Chaque élément peut être absent."
)
async def get_carte_formation(
    formation_id: int,
    ctx: Contexte = Depends(),
    geo: GeoService = Depends(get_geo_service),
):
    return await ctx.service(CarteService).carte_formation(formation_id, geo)

@formations.get(
    "/{formation_id}/participants",
    response_model=List[int],
    status_code=status.HTTP_200_OK,
    summary="Participants liés à une formation"
)
async def get_formation_participants(formation_id: int, ctx: Contexte = Depends()):
    return await ctx.service(FormationService).participant_ids(formation_id)

@formations.put(
    "/{formation_id}/participants",
    response_model=List[int],
    status_code=status.HTTP_200_OK,
    summary="Remplacer les participants d'une formation",
    description="Les inscriptions conservées gardent leur statut, les retirées sont désactivées, les nouvelles sont en attente."
)
async def replace_formation_participants(formation_id: int, selection: ParticipantsSelection, ctx: Contexte = Depends()):
    return await ctx.service(FormationService).remplacer_participants(formation_id, selection.participant_ids, ctx.owner_id)

@formations.delete(
    "/{formation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Supprimer une formation",
    description="Suppression logique : la formation est désactivée."
)
async def delete_formation(formation_id: int, ctx: Contexte = Depends()):
    await ctx.service(FormationService).soft_delete(formation_id, ctx.owner_id)

# Inscriptions
@formations.get(
    "/{formation_id}/inscriptions",
    response_model=List[InscriptionResponse],
    status_code=status.HTTP_200_OK,
    summary="Inscrits d'une formation",
    description="Inscriptions actives, filtrables par statut, recherche sur nom, prénom, email et institution."
)
async def get_inscriptions(
    formation_id: int,
    statut: Optional[StatutInscriptionEnum] = None,
    search: Optional[str] = None,
    ctx: Contexte = Depends(),
):
    return await ctx.service(InscriptionService).lister(formation_id, statut=statut, search=search)

@formations.post(
    "/{formation_id}/inscriptions",
    response_model=InscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Inscrire un participant"
)
async def create_inscription(formation_id: int, inscription: InscriptionCreate, ctx: Contexte = Depends()):
    return await ctx.service(InscriptionService).inscrire(
        formation_id, inscription.participant_id, ctx.owner_id, statut=inscription.statut
    )

@formations.patch(
    "/{formation_id}/inscriptions/{participant_id}",
    response_model=InscriptionResponse,
    status_code=status.HTTP_200_OK,
    summary="Changer le statut d'une inscription"
)
async def update_inscription(
    formation_id: int, participant_id: int, statut_data: InscriptionStatutUpdate, ctx: Contexte = Depends()
):
    return await ctx.service(InscriptionService).changer_statut(
        formation_id, participant_id, statut_data.statut, ctx.owner_id
    )

@formations.delete(
    "/{formation_id}/inscriptions/{participant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Désinscrire un participant",
    description="L'inscription est désactivée, pas supprimée."
)
async def delete_inscription(formation_id: int, participant_id: int, ctx: Contexte = Depends()):
    await ctx.service(InscriptionService).desinscrire(formation_id, participant_id, ctx.owner_id)


# ============================
# Router Paramètres
# ============================
parametres = APIRouter(
    prefix="/parametres",
    tags=["parametres"],
)

@parametres.post(
    "",
    response_model=ParametreResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer un paramètre",
    description="Le code est dérivé du libellé s'il est omis ; le couple (type, code) est unique parmi les paramètres actifs."
)
async def create_parametre(parametre_data: ParametreCreate, ctx: Contexte = Depends()):
    return await ctx.service(ParametreService).create(parametre_data, ctx.owner_id)

@parametres.get(
    "",
    response_model=Page[ParametreResponse],
    status_code=status.HTTP_200_OK,
    summary="Lister les paramètres"
)
async def get_all_parametres(
    type: Optional[TypeParametreEnum] = None,
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1),
    include_inactive: bool = False,
    ctx: Contexte = Depends(),
):
    items, total = await ctx.service(ParametreService).get_all(
        search=search, filters={"type": type}, skip=skip, limit=limit, include_inactive=include_inactive,
    )
    return Page(items=items, total=total, skip=skip, limit=limit)

@parametres.get(
    "/libelles/{type}",
    response_model=List[ParametreResponse],
    status_code=status.HTTP_200_OK,
    summary="Valeurs d'une liste déroulante",
    description="Paramètres actifs d'un type, triés par ordre."
)
async def get_libelles(type: TypeParametreEnum, ctx: Contexte = Depends()):
    return await ctx.service(ParametreService).libelles(type)

@parametres.get(
    "/{parametre_id}",
    response_model=ParametreResponse,
    status_code=status.HTTP_200_OK,
    summary="Récupérer un paramètre par ID"
)
async def get_parametre(parametre_id: int, ctx: Contexte = Depends()):
    return await ctx.service(ParametreService).get_by_id(parametre_id)

@parametres.put(
    "/{parametre_id}",
    response_model=ParametreResponse,
    status_code=status.HTTP_200_OK,
    summary="Mettre à jour un paramètre"
)
async def update_parametre(parametre_id: int, parametre_data: ParametreUpdate, ctx: Contexte = Depends()):
    return await ctx.service(ParametreService).update(parametre_id, parametre_data, ctx.owner_id)

@parametres.delete(
    "/{parametre_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Supprimer un paramètre"
)
async def delete_parametre(parametre_id: int, ctx: Contexte = Depends()):
    await ctx.service(ParametreService).soft_delete(parametre_id, ctx.owner_id)


# ============================
# Router Emails
# ============================
emails = APIRouter(
    prefix="/emails",
    tags=["emails"],
)

@emails.get(
    "",
    response_model=Page[EmailLight],
    status_code=status.HTTP_200_OK,
    summary="Lister les emails reçus",
    description="Emails actifs du plus récent au plus ancien, 10 par page, recherche sur sujet, destinataire et expéditeur."
)
async def get_all_emails(
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(10, ge=1),
    ctx: Contexte = Depends(),
):
    items, total = await ctx.service(EmailService).get_all(search=search, skip=skip, limit=limit)
    return Page(items=items, total=total, skip=skip, limit=limit)

@emails.get(
    "/{email_id}",
    response_model=EmailResponse,
    status_code=status.HTTP_200_OK,
    summary="Détail d'un email"
)
async def get_email(email_id: int, ctx: Contexte = Depends()):
    return await ctx.service(EmailService).get_by_id(email_id)

@emails.post(
    "/{email_id}/reponse-ia",
    response_model=ReponseIA,
    status_code=status.HTTP_200_OK,
    summary="Générer une réponse IA",
    description="Envoie le texte de l'email au webhook IA et retourne la réponse proposée, sans l'enregistrer."
)
async def generer_reponse_email(
    email_id: int,
    ctx: Contexte = Depends(),
    client: WebhookClient = Depends(get_response_webhook),
):
    return await ctx.service(EmailService).generer_reponse(email_id, client)

@emails.put(
    "/{email_id}/reponse",
    response_model=EmailResponse,
    status_code=status.HTTP_200_OK,
    summary="Enregistrer la réponse d'un email"
)
async def enregistrer_reponse_email(email_id: int, reponse: EmailReponseUpdate, ctx: Contexte = Depends()):
    return await ctx.service(EmailService).enregistrer_reponse(email_id, reponse.response, ctx.owner_id)

@emails.delete(
    "/{email_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Archiver un email"
)
async def delete_email(email_id: int, ctx: Contexte = Depends()):
    await ctx.service(EmailService).soft_delete(email_id, ctx.owner_id)


# ============================
# Router Factures
# ============================
factures = APIRouter(
    prefix="/factures",
    tags=["factures"],
)

@factures.get(
    "",
    response_model=Page[FactureResponse],
    status_code=status.HTTP_200_OK,
    summary="Lister les factures",
    description="Factures de la plus récente à la plus ancienne."
)
async def get_all_factures(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1),
    ctx: Contexte = Depends(),
):
    items, total = await ctx.service(FactureService).get_all(skip=skip, limit=limit)
    return Page(items=items, total=total, skip=skip, limit=limit)

@factures.post(
    "",
    response_model=FactureResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer une facture"
)
async def create_facture(facture_data: FactureCreate, ctx: Contexte = Depends()):
    return await ctx.service(FactureService).create(facture_data, ctx.owner_id)

@factures.put(
    "/{facture_id}",
    response_model=FactureResponse,
    status_code=status.HTTP_200_OK,
    summary="Mettre à jour une facture"
)
async def update_facture(facture_id: int, facture_data: FactureUpdate, ctx: Contexte = Depends()):
    return await ctx.service(FactureService).update(facture_id, facture_data, ctx.owner_id)

@factures.delete(
    "/{facture_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Supprimer une facture",
    description="Suppression définitive."
)
async def delete_facture(facture_id: int, ctx: Contexte = Depends()):
    await ctx.service(FactureService).delete(facture_id, ctx.owner_id)


# ============================
# Router Assistant
# ============================
assistant = APIRouter(
    prefix="/assistant",
    tags=["assistant"],
)

@assistant.post(
    "",
    response_model=AssistantResponse,
    status_code=status.HTTP_200_OK,
    summary="Interroger l'assistant",
    description="Transmet la question au webhook de l'assistant et retourne sa réponse décodée."
)
async def ask_assistant(
    question: AssistantRequest,
    ctx: Contexte = Depends(),
    client: WebhookClient = Depends(get_chatbot_webhook),
):
    return await ctx.service(AssistantService).demander(question.message, client)


# ============================
# Router Recherche
# ============================
recherche = APIRouter(
    prefix="/recherche",
    tags=["recherche"],
)

def _fetch_recherche(cible: CibleRechercheEnum, db: AsyncSession, formation_id: Optional[int]):
    service = RechercheService(db)
    if cible == CibleRechercheEnum.FORMATEURS:
        return service.formateurs
    if cible == CibleRechercheEnum.LIEUX:
        return service.lieux
    if cible == CibleRechercheEnum.CONTACTS:
        return service.contacts
    if cible == CibleRechercheEnum.INSCRIPTION:
        if formation_id is None:
            raise ValidationException("formation_id est requis pour la recherche d'inscription.")
        inscriptions = InscriptionService(db)
        return lambda term, limit: inscriptions.candidats(formation_id, term, limit)
    return lambda term, limit: service.globale(term, limit=3)

@recherche.get(
    "/{cible}",
    response_model=list,
    status_code=status.HTTP_200_OK,
    summary="Recherche ponctuelle",
    description="Même recherche que la boîte de recherche temps réel, sans temporisation. Moins de 2 caractères : aucun résultat."
)
async def rechercher(
    cible: CibleRechercheEnum,
    q: str = "",
    formation_id: Optional[int] = None,
    db: AsyncSession = Depends(get_async_db),
):
    if len(q.strip()) < settings.SEARCH_MIN_LENGTH:
        return []
    fetch = _fetch_recherche(cible, db, formation_id)
    return jsonable_encoder(await fetch(q.strip(), settings.SEARCH_LIMIT))


# ============================
# WebSockets temps réel
# ============================
temps_reel = APIRouter(
    prefix="/ws",
    tags=["temps-reel"],
)

TABLES_SUIVIES = {
    "formations": FormationService,
    "formateurs": FormateurService,
    "lieux": LieuService,
    "participants": ParticipantService,
    "parametres": ParametreService,
    "emails": EmailService,
    "FactureDemi": FactureService,
}

@temps_reel.websocket("/changes/{table}")
async def ws_changes(
    websocket: WebSocket,
    table: str,
    db: AsyncSession = Depends(get_async_db),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    service_class = TABLES_SUIVIES.get(table)
    if service_class is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()
    service = service_class(db)
    # Chaque vue a son propre bus : elle ne reçoit que les notifications de son écouteur
    bus = NotificationBus(ttl=settings.NOTIFICATION_TTL_SECONDS)
    envoyees = set()
    # Les événements arrivent depuis d'autres requêtes : un seul accès à la session à la fois
    verrou = asyncio.Lock()

    async def envoyer_lignes():
        db.expire_all()
        items, total = await service.get_all()
        await websocket.send_json({"type": "rows", "table": table, "total": total, "items": jsonable_encoder(items)})

    async def rafraichir():
        async with verrou:
            actives = bus.active()
            envoyees.intersection_update(n.id for n in actives)
            for notification in actives:
                if notification.id in envoyees:
                    continue
                envoyees.add(notification.id)
                await websocket.send_json({"type": "notification", "notification": jsonable_encoder(notification)})
            await envoyer_lignes()

    try:
        async with RealtimeChangeListener(hub, bus, table, refetch=rafraichir):
            try:
                async with verrou:
                    await envoyer_lignes()
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"[WS] Vue {table} fermée")
    finally:
        bus.close()

@temps_reel.websocket("/recherche/{cible}")
async def ws_recherche(
    websocket: WebSocket,
    cible: CibleRechercheEnum,
    formation_id: Optional[int] = None,
    db: AsyncSession = Depends(get_async_db),
):
    try:
        fetch = _fetch_recherche(cible, db, formation_id)
    except ValidationException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    # Une seule requête à la fois sur la session
    verrou = asyncio.Lock()

    async def fetch_serialise(term, limit):
        async with verrou:
            return await fetch(term, limit)

    async def envoyer(term, items):
        await websocket.send_json({"type": "results", "term": term, "items": jsonable_encoder(items)})

    boite = DebouncedSearch(
        fetch_serialise,
        delay=settings.search_delay,
        min_length=settings.SEARCH_MIN_LENGTH,
        limit=9 if cible == CibleRechercheEnum.GLOBAL else settings.SEARCH_LIMIT,
        on_results=envoyer,
    )
    await websocket.accept()
    try:
        while True:
            message = await websocket.receive_json()
            action = message.get("action")
            if action == "input":
                boite.input(str(message.get("term") or ""))
            elif action == "select":
                item = boite.select(message.get("item"))
                await websocket.send_json({"type": "selected", "item": item})
            elif action == "close":
                boite.close()
                await websocket.send_json({"type": "closed", "term": boite.term})
            else:
                await websocket.send_json({"type": "error", "message": f"Action inconnue : {action}"})
    except WebSocketDisconnect:
        logger.info(f"[WS] Recherche {cible.value} fermée")
    finally:
        await boite.aclose()
