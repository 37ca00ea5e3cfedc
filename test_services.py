"""
Tests des services d'accès aux données
Suppression logique, propriété, liaisons, paramètres, inscriptions et notifications
"""
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from temis.api.model import Email, Formation, FormationFormateur, Parametre
from temis.api.schema import (
    Coordonnees, FactureCreate, FactureUpdate, FormateurCreate, FormateurUpdate, FormationCreate, FormationUpdate,
    Itineraire, LieuCreate, LieuUpdate, ParametreCreate, ParametreUpdate, ParticipantCreate,
    ParticipantUpdate, ReponseIA
)
from temis.api.service import (
    CarteService, EmailService, FactureService, FormateurService, FormationService, InscriptionService,
    LieuService, ParametreService, ParticipantService, RechercheService, RelationMaintainer, generer_code
)
from temis.util.db.realtime import POSTGRES_CHANGES
from temis.util.helper.enum import (
    EvenementChangementEnum, PeriodeEnum, StatutInscriptionEnum, TypeNotificationEnum, TypeParametreEnum
)
from temis.util.helper.exceptions import (
    NotFoundException, PermissionException, RemoteStoreException, ValidationException
)
from temis.util.notification.listener import RealtimeChangeListener


# ──────────────────────────────────────────────────────────────
# Données de test
# ──────────────────────────────────────────────────────────────

async def creer_responsable(session, bus, owner_id, nom="Dupont"):
    return await ParticipantService(session, bus).create(
        ParticipantCreate(
            nom=nom, prenom="Marie", email=f"{nom.lower()}@commune.test",
            is_responsable=True, type_institution="Commune", nom_institution="Commune de Namur",
        ),
        owner_id,
    )


async def creer_formateurs(session, owner_id, *noms):
    service = FormateurService(session)
    return [
        await service.create(FormateurCreate(nom=nom, prenom="Jean", email=f"{nom.lower()}@temis.test"), owner_id)
        for nom in noms
    ]


async def liaisons_formateurs(session, formation_id):
    result = await session.execute(
        select(FormationFormateur.formateur_id).where(FormationFormateur.formation_id == formation_id)
    )
    return sorted(result.scalars().all())


def messages(bus, type=None):
    return [n.message for n in bus.active() if type is None or n.type == type]


# ──────────────────────────────────────────────────────────────
# Prix
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_prix_total_remplace_le_prix_unitaire(session, bus, user_a):
    service = FormationService(session, bus)
    formation = await service.create(
        FormationCreate(titre="Sécurité incendie", date=date(2030, 3, 1), prix_unitaire=50), user_a.id
    )
    assert formation.prix_unitaire == 50
    assert formation.prix_total is None

    formation = await service.modifier_prix(formation.id, "prix_total", 500, user_a.id)
    assert formation.prix_unitaire is None
    assert formation.prix_total == 500

    formation = await service.update(formation.id, FormationUpdate(prix_unitaire=None), user_a.id)
    assert formation.prix_total == 500


# ──────────────────────────────────────────────────────────────
# Suppression logique
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_lieu_supprime_absent_de_la_liste(session, bus, user_a):
    contact = await creer_responsable(session, bus, user_a.id)
    service = LieuService(session, bus)
    l1 = await service.create(LieuCreate(nom="Salle des fêtes", contact_id=contact.id), user_a.id)
    l2 = await service.create(LieuCreate(nom="Centre culturel", contact_id=contact.id), user_a.id)

    await service.soft_delete(l1.id, user_a.id)

    items, total = await service.get_all()
    assert [lieu.id for lieu in items] == [l2.id]
    assert total == 1

    supprime = await service.get_by_id(l1.id)
    assert supprime.is_active is False

    items, total = await service.get_all(include_inactive=True)
    assert total == 2


@pytest.mark.asyncio
async def test_element_supprime_non_modifiable(session, bus, user_a):
    formateur, = await creer_formateurs(session, user_a.id, "Martin")
    service = FormateurService(session, bus)
    await service.soft_delete(formateur.id, user_a.id)

    with pytest.raises(NotFoundException):
        await service.update(formateur.id, FormateurUpdate(nom="X"), user_a.id)


@pytest.mark.asyncio
async def test_element_inexistant(session, bus):
    with pytest.raises(NotFoundException):
        await FormateurService(session, bus).get_by_id(999)
    assert messages(bus, TypeNotificationEnum.ERROR) == ["Formateur avec ID 999 non trouvé."]


# ──────────────────────────────────────────────────────────────
# Propriété
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_participant_modifiable_uniquement_par_son_createur(session, bus, user_a, user_b):
    service = ParticipantService(session, bus)
    p1 = await service.create(ParticipantCreate(nom="Leroy", prenom="Paul", email="paul@test.be"), user_a.id)
    avant = await service.get_by_id(p1.id)

    with pytest.raises(PermissionException):
        await service.update(p1.id, ParticipantUpdate(nom="Pirate"), user_b.id)
    with pytest.raises(PermissionException):
        await service.soft_delete(p1.id, user_b.id)

    session.expire_all()
    apres = await service.get_by_id(p1.id)
    assert apres == avant
    assert apres.is_active is True

    modifie = await service.update(p1.id, ParticipantUpdate(nom="Leroy-Dubois"), user_a.id)
    assert modifie.nom == "Leroy-Dubois"
    assert modifie.updated_by == user_a.id


@pytest.mark.asyncio
async def test_ecriture_sans_utilisateur_refusee(session, bus):
    with pytest.raises(PermissionException) as exc:
        await FormateurService(session, bus).create(
            FormateurCreate(nom="Martin", prenom="Luc", email="luc@test.be"), None
        )
    assert exc.value.detail == "Vous devez être connecté pour créer un formateur"
    assert messages(bus, TypeNotificationEnum.ERROR) == ["Vous devez être connecté pour créer un formateur"]
    assert (await FormateurService(session).get_all())[1] == 0


@pytest.mark.asyncio
async def test_participant_non_responsable_sans_institution(session, bus, user_a):
    service = ParticipantService(session, bus)
    participant = await service.create(
        ParticipantCreate(nom="Petit", prenom="Eva", email="eva@test.be", nom_institution="Ignorée"), user_a.id
    )
    assert participant.nom_institution is None

    responsable = await service.update(
        participant.id, ParticipantUpdate(is_responsable=True, nom_institution="CPAS de Liège"), user_a.id
    )
    assert responsable.nom_institution == "CPAS de Liège"

    redevenu = await service.update(participant.id, ParticipantUpdate(is_responsable=False), user_a.id)
    assert redevenu.nom_institution is None


# ──────────────────────────────────────────────────────────────
# Lieux
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_lieu_exige_un_contact_responsable(session, bus, user_a):
    service = LieuService(session, bus)
    with pytest.raises(ValidationException) as exc:
        await service.create(LieuCreate(nom="Salle sans contact"), user_a.id)
    assert exc.value.detail == "Veuillez sélectionner un contact responsable"

    simple = await ParticipantService(session).create(
        ParticipantCreate(nom="Simple", prenom="Jo", email="jo@test.be"), user_a.id
    )
    with pytest.raises(ValidationException):
        await service.create(LieuCreate(nom="Salle", contact_id=simple.id), user_a.id)

    contact = await creer_responsable(session, bus, user_a.id)
    lieu = await service.create(LieuCreate(nom="Salle", contact_id=contact.id), user_a.id)
    with pytest.raises(ValidationException):
        await service.update(lieu.id, LieuUpdate(contact_id=None), user_a.id)


@pytest.mark.asyncio
async def test_formations_d_un_lieu_par_periode(session, bus, user_a):
    contact = await creer_responsable(session, bus, user_a.id)
    lieu = await LieuService(session).create(LieuCreate(nom="Auditorium", contact_id=contact.id), user_a.id)
    service = FormationService(session)
    aujourd_hui = date.today()
    for titre, decalage in (("Passée A", -20), ("Passée B", -5), ("Aujourd'hui", 0), ("Future", 10)):
        await service.create(
            FormationCreate(titre=titre, date=aujourd_hui + timedelta(days=decalage), lieu_id=lieu.id), user_a.id
        )

    futures, total = await service.get_by_lieu(lieu.id, PeriodeEnum.FUTURE)
    assert [f.titre for f in futures] == ["Aujourd'hui", "Future"]
    assert total == 2

    passees, total = await service.get_by_lieu(lieu.id, PeriodeEnum.PAST)
    assert [f.titre for f in passees] == ["Passée B", "Passée A"]

    filtrees, total = await service.get_by_lieu(lieu.id, PeriodeEnum.PAST, search="b")
    assert [f.titre for f in filtrees] == ["Passée B"]

    page, total = await service.get_by_lieu(lieu.id, PeriodeEnum.PAST, skip=1, limit=1)
    assert [f.titre for f in page] == ["Passée A"]
    assert total == 2


# ──────────────────────────────────────────────────────────────
# Liaisons formation ↔ formateur
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_remplacement_des_formateurs(session, bus, hub, user_a):
    t1, t2, t3 = await creer_formateurs(session, user_a.id, "Alpha", "Bravo", "Charlie")
    service = FormationService(session, bus, hub)
    formation = await service.create(
        FormationCreate(titre="Premiers secours", date=date(2030, 5, 1), formateur_ids=[t1.id, t2.id]), user_a.id
    )
    assert [f.nom for f in formation.formateurs] == ["Alpha", "Bravo"]

    formation = await service.update(formation.id, FormationUpdate(formateur_ids=[t2.id, t3.id]), user_a.id)
    assert await liaisons_formateurs(session, formation.id) == [t2.id, t3.id]
    assert [f.nom for f in formation.formateurs] == ["Bravo", "Charlie"]

    # Deux enregistrements identiques successifs
    await service.update(formation.id, FormationUpdate(formateur_ids=[t2.id, t3.id]), user_a.id)
    await service.update(formation.id, FormationUpdate(formateur_ids=[t2.id, t3.id]), user_a.id)
    assert await liaisons_formateurs(session, formation.id) == [t2.id, t3.id]

    # Sans formateur_ids les liaisons sont conservées
    await service.update(formation.id, FormationUpdate(titre="Premiers secours avancés"), user_a.id)
    assert await liaisons_formateurs(session, formation.id) == [t2.id, t3.id]


@pytest.mark.asyncio
async def test_remplacement_publie_suppressions_puis_insertions(session, hub, user_a):
    t1, t2 = await creer_formateurs(session, user_a.id, "Alpha", "Bravo")
    formation = await FormationService(session).create(
        FormationCreate(titre="Secourisme", date=date(2030, 5, 1), formateur_ids=[t1.id]), user_a.id
    )
    recus = []
    hub.channel("liaisons").on(POSTGRES_CHANGES, {"table": "formation_formateurs"}, recus.append).subscribe()

    maintainer = RelationMaintainer(session, FormationFormateur, "formation_id", "formateur_id", hub=hub)
    await maintainer.replace_all(formation.id, [t2.id], user_a.id)

    assert [(e.event_type, e.old.get("formateur_id"), e.new.get("formateur_id")) for e in recus] == [
        (EvenementChangementEnum.DELETE, t1.id, None),
        (EvenementChangementEnum.INSERT, None, t2.id),
    ]


@pytest.mark.asyncio
async def test_echec_apres_suppression_invite_a_reessayer(session, user_a):
    t1, t2 = await creer_formateurs(session, user_a.id, "Alpha", "Bravo")
    formation = await FormationService(session).create(
        FormationCreate(titre="Secourisme", date=date(2030, 5, 1), formateur_ids=[t1.id]), user_a.id
    )
    maintainer = RelationMaintainer(session, FormationFormateur, "formation_id", "formateur_id")

    # Doublon : la contrainte d'unicité fait échouer l'insertion
    with pytest.raises(RemoteStoreException) as exc:
        await maintainer.replace_all(formation.id, [t2.id, t2.id], user_a.id)
    assert "Veuillez réessayer" in exc.value.detail
    assert await maintainer.child_ids(formation.id) == []

    await maintainer.replace_all(formation.id, [t2.id], user_a.id)
    assert await maintainer.child_ids(formation.id) == [t2.id]


@pytest.mark.asyncio
async def test_echec_des_formateurs_a_la_modification_notifie_une_erreur(session, bus, user_a, monkeypatch):
    t1, t2 = await creer_formateurs(session, user_a.id, "Alpha", "Bravo")
    service = FormationService(session, bus)
    formation = await service.create(
        FormationCreate(titre="Secourisme", date=date(2030, 5, 1), formateur_ids=[t1.id]), user_a.id
    )
    for notification in bus.active():
        bus.dismiss(notification.id)

    async def insertion_en_echec(self, parent_id, child_ids, owner_id):
        raise RemoteStoreException("Les liaisons n'ont pas pu être enregistrées. Veuillez réessayer.")

    monkeypatch.setattr(RelationMaintainer, "insert_all", insertion_en_echec)

    with pytest.raises(RemoteStoreException) as exc:
        await service.update(formation.id, FormationUpdate(formateur_ids=[t2.id]), user_a.id)
    assert "Veuillez réessayer" in exc.value.detail

    erreurs = messages(bus, TypeNotificationEnum.ERROR)
    assert len(erreurs) == 1
    assert "Veuillez réessayer" in erreurs[0]
    assert messages(bus, TypeNotificationEnum.SUCCESS) == []
    assert await liaisons_formateurs(session, formation.id) == []


@pytest.mark.asyncio
async def test_duplication_formation(session, bus, user_a):
    t1, t2 = await creer_formateurs(session, user_a.id, "Alpha", "Bravo")
    service = FormationService(session, bus)
    source = await service.create(
        FormationCreate(
            titre="Gestion du stress", date=date(2030, 1, 10), categorie="Bien-être",
            nombre_heures=6, prix_total=800, formateur_ids=[t1.id, t2.id],
        ),
        user_a.id,
    )
    await service.modifier_rating(source.id, 87, user_a.id)

    copie = await service.dupliquer(source.id, date(2030, 6, 10), user_a.id)
    assert copie.id != source.id
    assert copie.date == date(2030, 6, 10)
    assert copie.rating == 0
    assert copie.titre == "Gestion du stress"
    assert copie.prix_total == 800
    assert [f.id for f in copie.formateurs] == [t1.id, t2.id]
    assert (await service.get_by_id(source.id)).rating == 87


# ──────────────────────────────────────────────────────────────
# Inscriptions
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cycle_d_inscription(session, bus, user_a):
    formation = await FormationService(session).create(
        FormationCreate(titre="Communication", date=date(2030, 2, 2)), user_a.id
    )
    participants = ParticipantService(session)
    anna = await participants.create(ParticipantCreate(nom="Anna", prenom="Lise", email="anna@test.be"), user_a.id)
    boris = await participants.create(ParticipantCreate(nom="Boris", prenom="Max", email="boris@test.be"), user_a.id)
    service = InscriptionService(session, bus)

    inscription = await service.inscrire(formation.id, anna.id, user_a.id)
    assert inscription.statut == StatutInscriptionEnum.PENDING
    with pytest.raises(ValidationException):
        await service.inscrire(formation.id, anna.id, user_a.id)

    assert [p.id for p in await service.candidats(formation.id, "o")] == [boris.id]

    inscription = await service.changer_statut(formation.id, anna.id, StatutInscriptionEnum.PAID, user_a.id)
    assert inscription.statut == StatutInscriptionEnum.PAID
    assert [i.participant_id for i in await service.lister(formation.id, statut=StatutInscriptionEnum.PAID)] == [anna.id]
    assert (await FormationService(session).get_by_id(formation.id)).participant_count == 1

    await service.desinscrire(formation.id, anna.id, user_a.id)
    assert await service.lister(formation.id) == []
    assert (await FormationService(session).get_by_id(formation.id)).participant_count == 0

    # Réinscription : la ligne désactivée est réutilisée
    await service.inscrire(formation.id, anna.id, user_a.id, statut=StatutInscriptionEnum.CONFIRMED)
    inscrits = await service.lister(formation.id)
    assert [(i.participant_id, i.statut) for i in inscrits] == [(anna.id, StatutInscriptionEnum.CONFIRMED)]


@pytest.mark.asyncio
async def test_remplacement_des_participants(session, bus, user_a):
    formation = await FormationService(session).create(
        FormationCreate(titre="Communication", date=date(2030, 2, 2)), user_a.id
    )
    participants = ParticipantService(session)
    ids = [
        (await participants.create(ParticipantCreate(nom=nom, prenom="X", email=f"{nom}@t.be"), user_a.id)).id
        for nom in ("Anna", "Boris", "Chloé")
    ]
    service = FormationService(session, bus)

    assert await service.remplacer_participants(formation.id, ids[:2], user_a.id) == ids[:2]
    assert await service.remplacer_participants(formation.id, ids[1:], user_a.id) == ids[1:]
    assert await service.remplacer_participants(formation.id, ids[1:], user_a.id) == ids[1:]
    assert await service.participant_ids(formation.id) == ids[1:]


@pytest.mark.asyncio
async def test_remplacement_des_participants_conserve_les_inscriptions(session, bus, hub, user_a):
    formation = await FormationService(session).create(
        FormationCreate(titre="Communication", date=date(2030, 2, 2)), user_a.id
    )
    participants = ParticipantService(session)
    anna, boris = [
        (await participants.create(ParticipantCreate(nom=nom, prenom="X", email=f"{nom}@t.be"), user_a.id)).id
        for nom in ("Anna", "Boris")
    ]
    inscriptions = InscriptionService(session)
    await inscriptions.inscrire(formation.id, anna, user_a.id)
    await inscriptions.changer_statut(formation.id, anna, StatutInscriptionEnum.PAID, user_a.id)
    await inscriptions.inscrire(formation.id, boris, user_a.id, statut=StatutInscriptionEnum.CONFIRMED)

    recus = []
    hub.channel("inscriptions").on(POSTGRES_CHANGES, {"table": "formation_participants"}, recus.append).subscribe()
    service = FormationService(session, bus, hub)

    # Même sélection : rien ne change
    await service.remplacer_participants(formation.id, [anna, boris], user_a.id)
    assert recus == []
    statuts = {i.participant_id: i.statut for i in await inscriptions.lister(formation.id)}
    assert statuts == {anna: StatutInscriptionEnum.PAID, boris: StatutInscriptionEnum.CONFIRMED}

    # Boris retiré : son inscription est désactivée, pas supprimée
    await service.remplacer_participants(formation.id, [anna], user_a.id)
    assert [(e.event_type, e.new["participant_id"], e.new["is_active"]) for e in recus] == [
        (EvenementChangementEnum.UPDATE, boris, False),
    ]
    assert [(i.participant_id, i.statut) for i in await inscriptions.lister(formation.id)] == [
        (anna, StatutInscriptionEnum.PAID),
    ]

    # Boris resélectionné : la ligne est réactivée en attente
    await service.remplacer_participants(formation.id, [anna, boris], user_a.id)
    statuts = {i.participant_id: i.statut for i in await inscriptions.lister(formation.id)}
    assert statuts == {anna: StatutInscriptionEnum.PAID, boris: StatutInscriptionEnum.PENDING}
    assert messages(bus, TypeNotificationEnum.SUCCESS) == ["Participants mis à jour avec succès"] * 3


# ──────────────────────────────────────────────────────────────
# Paramètres
# ──────────────────────────────────────────────────────────────

async def compter_parametres(session):
    return (await session.execute(select(func.count()).select_from(Parametre))).scalar_one()


@pytest.mark.asyncio
async def test_unicite_des_parametres(session, bus, user_a):
    service = ParametreService(session, bus)
    parametre = await service.create(
        ParametreCreate(type=TypeParametreEnum.TYPE_INSTITUTION, libelle="Établissement public"), user_a.id
    )
    assert parametre.code == "etablissement_public"

    with pytest.raises(ValidationException) as exc:
        await service.create(
            ParametreCreate(type=TypeParametreEnum.TYPE_INSTITUTION, code="etablissement_public", libelle="Doublon"),
            user_a.id,
        )
    assert exc.value.detail == "Un paramètre avec ce code existe déjà pour ce type"
    assert await compter_parametres(session) == 1

    # Même code sur un autre type
    await service.create(
        ParametreCreate(type=TypeParametreEnum.TYPE_FORMATION, code="etablissement_public", libelle="Autre"),
        user_a.id,
    )

    # Le code redevient libre après suppression logique
    await service.soft_delete(parametre.id, user_a.id)
    recree = await service.create(
        ParametreCreate(type=TypeParametreEnum.TYPE_INSTITUTION, libelle="Établissement public"), user_a.id
    )
    assert recree.code == "etablissement_public"


@pytest.mark.asyncio
async def test_parametres_par_type(session, user_a, user_b):
    service = ParametreService(session)
    for libelle, ordre in (("Commune", 2), ("CPAS", 1), ("ASBL", 3)):
        await service.create(
            ParametreCreate(type=TypeParametreEnum.TYPE_INSTITUTION, libelle=libelle, ordre=ordre), user_a.id
        )
    await service.create(ParametreCreate(type=TypeParametreEnum.TYPE_FORMATION, libelle="Présentiel"), user_a.id)

    libelles = await service.libelles(TypeParametreEnum.TYPE_INSTITUTION)
    assert [p.libelle for p in libelles] == ["CPAS", "Commune", "ASBL"]

    with pytest.raises(PermissionException):
        await service.update(libelles[0].id, ParametreUpdate(libelle="Centre public"), user_b.id)


def test_generer_code():
    assert generer_code("Établissement public") == "etablissement_public"
    assert generer_code("  Hôpital / Clinique  ") == "hopital_clinique"
    assert generer_code("!!!") == ""


# ──────────────────────────────────────────────────────────────
# Notifications des actions
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_une_notification_par_action(session, bus, user_a):
    service = FormateurService(session, bus)
    formateur = await service.create(FormateurCreate(nom="Martin", prenom="Luc", email="luc@test.be"), user_a.id)
    await service.get_all()
    await service.get_by_id(formateur.id)

    notifications = bus.active()
    assert len(notifications) == 1
    assert notifications[0].type == TypeNotificationEnum.SUCCESS
    assert notifications[0].message == "Formateur créé avec succès"
    assert notifications[0].data == {"table": "formateurs", "action": "Création", "details": "Luc Martin"}

    await service.soft_delete(formateur.id, user_a.id)
    assert messages(bus)[-1] == "Formateur supprimé avec succès"


@pytest.mark.asyncio
async def test_formation_accord_feminin(session, bus, user_a):
    service = FormationService(session, bus)
    formation = await service.create(FormationCreate(titre="Écoute active", date=date(2030, 1, 1)), user_a.id)
    await service.update(formation.id, FormationUpdate(nombre_heures=4), user_a.id)
    assert messages(bus) == ["Formation créée avec succès", "Formation mise à jour avec succès"]


# ──────────────────────────────────────────────────────────────
# Factures et temps réel
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_factures_diffusees_en_temps_reel(session, bus, hub, user_a):
    service = FactureService(session, bus, hub)
    async with RealtimeChangeListener(hub, bus, "FactureDemi"):
        facture = await service.create(
            FactureCreate(nom_client="Mairie de Liège", prix=100, nfacture="F-001"), user_a.id
        )
        await service.update(facture.id, FactureUpdate(prix=120), user_a.id)
        await service.delete(facture.id, user_a.id)

    recus = messages(bus)
    assert "Nouvelle facture créée - Client: Mairie de Liège - Montant: 100€ - N° F-001" in recus
    assert "Facture modifiée - Client: Mairie de Liège - Modifications: prix: 100 → 120" in recus
    assert "Facture supprimée - N° F-001 - Client: Mairie de Liège" in recus

    items, total = await service.get_all()
    assert items == [] and total == 0


# ──────────────────────────────────────────────────────────────
# Emails
# ──────────────────────────────────────────────────────────────

class FauxClient:
    def __init__(self):
        self.messages = []

    async def ask(self, message):
        self.messages.append(message)
        return ReponseIA(source="output", texte="Merci, votre inscription est confirmée.")


@pytest.mark.asyncio
async def test_reponse_ia_et_enregistrement(session, bus, user_a):
    email = Email(
        from_email="client@commune.test", to_email="info@temis.test", subject="Inscription",
        body="<p>Bonjour,</p><p>Je souhaite m'inscrire.</p>",
    )
    session.add(email)
    await session.commit()
    service = EmailService(session, bus)
    client = FauxClient()

    reponse = await service.generer_reponse(email.id, client)
    assert reponse.texte == "Merci, votre inscription est confirmée."
    assert client.messages == ["Bonjour,\nJe souhaite m'inscrire."]
    assert bus.active()[-1].data == {"table": "Emails", "action": "Génération", "details": "IA"}

    enregistre = await service.enregistrer_reponse(email.id, reponse.texte, user_a.id)
    assert enregistre.response == reponse.texte
    assert enregistre.response_by == user_a.id

    items, total = await service.get_all()
    assert total == 1 and items[0].response == reponse.texte


# ──────────────────────────────────────────────────────────────
# Recherche et carte
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_recherche_globale(session, bus, user_a):
    contact = await creer_responsable(session, bus, user_a.id, nom="Namurois")
    lieu = await LieuService(session).create(
        LieuCreate(nom="Salle Namur", ville="Namur", code_postal="5000", contact_id=contact.id), user_a.id
    )
    await FormationService(session).create(FormationCreate(titre="Namur et sécurité", date=date(2030, 1, 1)), user_a.id)
    await creer_formateurs(session, user_a.id, "Namuroise")

    resultats = await RechercheService(session).globale("namur")
    assert [r.type for r in resultats] == ["formation", "formateur", "lieu"]
    assert resultats[2].path == f"/lieux?id={lieu.id}"
    assert resultats[2].subtitle == "5000 Namur"

    contacts = await RechercheService(session).contacts("namur")
    assert [c.id for c in contacts] == [contact.id]


class FausseGeo:
    async def geocode(self, adresse):
        if "Inconnue" in adresse:
            return None
        return Coordonnees(lat=50.0, lon=5.0)

    async def route(self, depart, arrivee):
        return Itineraire(distance_km=42, trace=[depart, arrivee])


@pytest.mark.asyncio
async def test_carte_formation(session, bus, user_a):
    contact = await creer_responsable(session, bus, user_a.id)
    lieu = await LieuService(session).create(
        LieuCreate(nom="Salle", adresse="Rue de Fer 1", code_postal="5000", ville="Namur", contact_id=contact.id),
        user_a.id,
    )
    formateurs = FormateurService(session)
    proche = await formateurs.create(
        FormateurCreate(nom="Alpha", prenom="A", email="a@t.be", adresse="Rue Haute 2", ville="Liège"), user_a.id
    )
    perdu = await formateurs.create(
        FormateurCreate(nom="Bravo", prenom="B", email="b@t.be", adresse="Rue Inconnue"), user_a.id
    )
    formation = await FormationService(session).create(
        FormationCreate(titre="Terrain", date=date(2030, 1, 1), lieu_id=lieu.id, formateur_ids=[proche.id, perdu.id]),
        user_a.id,
    )

    carte = await CarteService(session).carte_formation(formation.id, FausseGeo())
    assert carte.carte_disponible
    assert carte.formateurs[0].itineraire.distance_km == 42
    assert carte.formateurs[1].coordonnees is None
    assert carte.formateurs[1].itineraire is None


@pytest.mark.asyncio
async def test_formation_avec_lieu_inconnu(session, bus, user_a):
    with pytest.raises(ValidationException):
        await FormationService(session, bus).create(
            FormationCreate(titre="Sans lieu", date=date(2030, 1, 1), lieu_id=404), user_a.id
        )
    count = (await session.execute(select(func.count()).select_from(Formation))).scalar_one()
    assert count == 0
