"""Exclusion mutuelle entre prix unitaire et prix total d'une formation.

Un prix non nul saisi sur l'un des deux champs vide l'autre ; effacer un
champ laisse l'autre intact.
"""
from typing import Any, Dict, Mapping

PRIX_UNITAIRE = "prix_unitaire"
PRIX_TOTAL = "prix_total"
CHAMPS_PRIX = (PRIX_UNITAIRE, PRIX_TOTAL)


def _vide(valeur: Any) -> bool:
    return valeur is None or (isinstance(valeur, str) and valeur.strip() == "")


def appliquer_prix(etat: Mapping[str, Any], champ: str, valeur: Any) -> Dict[str, Any]:
    """Retourne un nouvel état après saisie de ``valeur`` dans ``champ``."""
    if champ not in CHAMPS_PRIX:
        raise ValueError(f"Champ de prix inconnu : {champ}")

    nouvel_etat = dict(etat)
    if _vide(valeur):
        nouvel_etat[champ] = None
        return nouvel_etat

    autre = PRIX_TOTAL if champ == PRIX_UNITAIRE else PRIX_UNITAIRE
    nouvel_etat[champ] = valeur
    nouvel_etat[autre] = None
    return nouvel_etat


def appliquer_modifications_prix(etat: Mapping[str, Any], modifications: Mapping[str, Any]) -> Dict[str, Any]:
    """Applique les champs de prix présents dans ``modifications`` à ``etat``."""
    resultat = dict(etat)
    for champ in CHAMPS_PRIX:
        if champ in modifications:
            resultat = appliquer_prix(resultat, champ, modifications[champ])
    return resultat
