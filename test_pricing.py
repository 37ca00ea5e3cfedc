"""
Tests de l'exclusion mutuelle prix unitaire / prix total
"""
import pytest
from pydantic import ValidationError

from temis.api.schema import FormationCreate, FormationUpdate
from temis.util.helper.pricing import appliquer_modifications_prix, appliquer_prix


def test_prix_total_vide_le_prix_unitaire():
    etat = appliquer_prix({"prix_unitaire": 50, "prix_total": None}, "prix_total", 500)
    assert etat == {"prix_unitaire": None, "prix_total": 500}


def test_prix_unitaire_vide_le_prix_total():
    etat = appliquer_prix({"prix_unitaire": None, "prix_total": 500}, "prix_unitaire", 45)
    assert etat == {"prix_unitaire": 45, "prix_total": None}


@pytest.mark.parametrize("vide", [None, "", "   "])
def test_effacer_un_prix_laisse_l_autre_intact(vide):
    etat = appliquer_prix({"prix_unitaire": 50, "prix_total": 500}, "prix_total", vide)
    assert etat == {"prix_unitaire": 50, "prix_total": None}


def test_zero_est_une_valeur_non_nulle():
    etat = appliquer_prix({"prix_unitaire": 50, "prix_total": None}, "prix_total", 0)
    assert etat == {"prix_unitaire": None, "prix_total": 0}


def test_etat_initial_non_modifie():
    initial = {"prix_unitaire": 50, "prix_total": None}
    appliquer_prix(initial, "prix_total", 500)
    assert initial == {"prix_unitaire": 50, "prix_total": None}


def test_champ_inconnu():
    with pytest.raises(ValueError):
        appliquer_prix({}, "prix_htva", 10)


def test_modifications_sans_prix_ne_changent_rien():
    etat = {"prix_unitaire": 50, "prix_total": None}
    assert appliquer_modifications_prix(etat, {"titre": "Autre"}) == etat


def test_schema_refuse_les_deux_prix():
    with pytest.raises(ValidationError):
        FormationCreate(titre="Sécurité incendie", date="2030-01-15", prix_unitaire=50, prix_total=500)
    with pytest.raises(ValidationError):
        FormationUpdate(prix_unitaire=50, prix_total=500)


def test_schema_dedoublonne_les_formateurs():
    formation = FormationCreate(titre="Sécurité incendie", date="2030-01-15", formateur_ids=[3, 1, 3, 2, 1])
    assert formation.formateur_ids == [3, 1, 2]
