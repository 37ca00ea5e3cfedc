"""
Tests du flux temps réel et de l'écoute des changements
"""
import logging

import pytest

from temis.util.db.realtime import POSTGRES_CHANGES, RealtimeHub, build_event
from temis.util.helper.enum import EvenementChangementEnum, TypeNotificationEnum
from temis.util.helper.exceptions import RealtimeException
from temis.util.notification.bus import NotificationBus
from temis.util.notification.listener import RealtimeChangeListener, diff_lignes, formater_valeur

FACTURE = {"id": 12, "nom_client": "Mairie de Liège", "prix": 100, "nfacture": "F-2024-001", "quantite": 1}


class Compteur:
    def __init__(self):
        self.appels = 0

    async def __call__(self):
        self.appels += 1


@pytest.fixture
def bus():
    bus = NotificationBus(ttl=60, clock=lambda: 0.0)
    yield bus
    bus.close()


@pytest.mark.asyncio
async def test_modification_facture_decrit_le_changement(hub, bus):
    refetch = Compteur()
    listener = RealtimeChangeListener(hub, bus, "FactureDemi", refetch=refetch)
    assert listener.start()

    await hub.publish(build_event(
        EvenementChangementEnum.UPDATE, "FactureDemi",
        new={**FACTURE, "prix": 120.0}, old=FACTURE,
    ))

    notifications = bus.active()
    assert len(notifications) == 1
    assert "prix: 100 → 120" in notifications[0].message
    assert notifications[0].message.startswith("Facture modifiée - Client: Mairie de Liège")
    assert notifications[0].type == TypeNotificationEnum.INFO
    assert notifications[0].data == {"table": "FactureDemi", "action": "UPDATE", "details": 12}
    assert refetch.appels == 1


@pytest.mark.asyncio
async def test_insertion_et_suppression_facture(hub, bus):
    listener = RealtimeChangeListener(hub, bus, "FactureDemi")
    listener.start()

    await hub.publish(build_event(EvenementChangementEnum.INSERT, "FactureDemi", new=FACTURE))
    await hub.publish(build_event(EvenementChangementEnum.DELETE, "FactureDemi", old=FACTURE))

    creation, suppression = bus.active()
    assert creation.message == "Nouvelle facture créée - Client: Mairie de Liège - Montant: 100€ - N° F-2024-001"
    assert creation.type == TypeNotificationEnum.SUCCESS
    assert suppression.message == "Facture supprimée - N° F-2024-001 - Client: Mairie de Liège"
    assert suppression.type == TypeNotificationEnum.ERROR
    assert suppression.data["details"] == 12


@pytest.mark.asyncio
async def test_modification_sans_changement_rafraichit_sans_notifier(hub, bus):
    refetch = Compteur()
    listener = RealtimeChangeListener(hub, bus, "FactureDemi", refetch=refetch)
    listener.start()

    await hub.publish(build_event(
        EvenementChangementEnum.UPDATE, "FactureDemi",
        new={**FACTURE, "updated_at": "2024-05-02"}, old={**FACTURE, "updated_at": "2024-05-01"},
    ))

    assert bus.active() == []
    assert refetch.appels == 1


@pytest.mark.asyncio
async def test_autres_tables_ignorees(hub, bus):
    listener = RealtimeChangeListener(hub, bus, "FactureDemi")
    listener.start()

    await hub.publish(build_event(EvenementChangementEnum.INSERT, "formations", new={"id": 1, "titre": "Secourisme"}))

    assert bus.active() == []


@pytest.mark.asyncio
async def test_desabonnement(hub, bus):
    refetch = Compteur()
    async with RealtimeChangeListener(hub, bus, "formations", refetch=refetch) as listener:
        assert listener.subscribed
        assert hub.subscriptions == 1
    assert not listener.subscribed
    assert hub.subscriptions == 0

    await hub.publish(build_event(EvenementChangementEnum.INSERT, "formations", new={"id": 1, "titre": "Secourisme"}))
    assert bus.active() == []
    assert refetch.appels == 0


@pytest.mark.asyncio
async def test_libelle_formation(hub, bus):
    listener = RealtimeChangeListener(hub, bus, "formations")
    listener.start()

    await hub.publish(build_event(EvenementChangementEnum.INSERT, "formations", new={"id": 1, "titre": "Secourisme"}))

    assert bus.active()[0].message == "Formation ajouté(e) - Secourisme"


def test_flux_ferme_journalise_sans_lever(bus, caplog):
    hub = RealtimeHub()
    hub.close()
    listener = RealtimeChangeListener(hub, bus, "FactureDemi")

    with caplog.at_level(logging.ERROR):
        assert listener.start() is False
    assert not listener.subscribed
    assert "Abonnement impossible sur FactureDemi" in caplog.text


def test_type_d_evenement_inconnu(hub):
    with pytest.raises(RealtimeException):
        hub.channel("test").on("broadcast", {"table": "formations"}, lambda e: None)


@pytest.mark.asyncio
async def test_erreur_d_un_observateur_n_interrompt_pas_les_autres(hub):
    recus = []

    def en_echec(evenement):
        raise RuntimeError("observateur cassé")

    hub.channel("a").on(POSTGRES_CHANGES, {"table": "lieux"}, en_echec).subscribe()
    hub.channel("b").on(POSTGRES_CHANGES, {"table": "lieux"}, recus.append).subscribe()

    await hub.publish(build_event(EvenementChangementEnum.DELETE, "lieux", old={"id": 4}))
    assert len(recus) == 1


def test_formater_valeur():
    assert formater_valeur(None) == "Non spécifié"
    assert formater_valeur("  ") == "Non spécifié"
    assert formater_valeur(100.0) == "100"
    assert formater_valeur(99.5) == "99.5"
    assert formater_valeur(True) == "oui"
    assert formater_valeur(EvenementChangementEnum.INSERT) == "INSERT"


def test_diff_lignes_ignore_les_colonnes_absentes():
    ancienne = {"id": 1, "prix": 100, "nom_client": "A"}
    nouvelle = {"id": 1, "prix": 100, "nom_client": "B", "quantite": 3}
    assert diff_lignes(ancienne, nouvelle) == [("nom_client", "A", "B")]


@pytest.mark.asyncio
async def test_deux_vues_recoivent_chacune_une_notification(hub, bus):
    vues = []
    for _ in range(2):
        bus_vue = NotificationBus(ttl=60, clock=lambda: 0.0)
        refetch = Compteur()
        RealtimeChangeListener(hub, bus_vue, "FactureDemi", refetch=refetch).start()
        vues.append((bus_vue, refetch))

    await hub.publish(build_event(EvenementChangementEnum.INSERT, "FactureDemi", new=FACTURE))

    for bus_vue, refetch in vues:
        assert [n.message for n in bus_vue.active()] == [
            "Nouvelle facture créée - Client: Mairie de Liège - Montant: 100€ - N° F-2024-001"
        ]
        assert refetch.appels == 1
        bus_vue.close()
    assert bus.active() == []
