"""Client des webhooks IA (réponse aux emails, assistant).

Le webhook répond soit par une chaîne, soit par un objet ``{"output": ...}``,
soit par une liste de ces formes. La réponse est décodée une seule fois ici
en ``ReponseIA`` ; toute autre forme est sérialisée en JSON.
"""
import asyncio
import json
import logging
from html.parser import HTMLParser
from typing import Any, Optional

import aiohttp

from temis.api.schema import ReponseIA
from temis.util.db.setting import settings
from temis.util.helper.exceptions import ExternalServiceException

logger = logging.getLogger(__name__)


class _ExtracteurTexte(HTMLParser):
    BLOCS = {"p", "div", "br", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6"}

    def __init__(self):
        super().__init__()
        self.morceaux = []
        self._ignore = 0

    def handle_starttag(self, tag, attrs):
        if tag in ("script", "style"):
            self._ignore += 1
        elif tag in self.BLOCS:
            self.morceaux.append("\n")

    def handle_endtag(self, tag):
        if tag in ("script", "style") and self._ignore:
            self._ignore -= 1
        elif tag in self.BLOCS:
            self.morceaux.append("\n")

    def handle_data(self, data):
        if not self._ignore:
            self.morceaux.append(data)


def html_vers_texte(html: str) -> str:
    """Texte brut d'un corps d'email HTML, lignes vides compactées."""
    extracteur = _ExtracteurTexte()
    extracteur.feed(html or "")
    extracteur.close()
    lignes = (" ".join(ligne.split()) for ligne in "".join(extracteur.morceaux).splitlines())
    return "\n".join(ligne for ligne in lignes if ligne)


def _en_texte(valeur: Any) -> str:
    if isinstance(valeur, str):
        return valeur
    return json.dumps(valeur, ensure_ascii=False)


def decode_webhook_payload(payload: Any) -> ReponseIA:
    if isinstance(payload, str):
        return ReponseIA(source="texte", texte=payload)
    if isinstance(payload, list):
        if not payload:
            return ReponseIA(source="inconnu", texte=_en_texte(payload))
        premier = payload[0]
        if isinstance(premier, dict) and "output" in premier:
            return ReponseIA(source="liste", texte=_en_texte(premier["output"]))
        if isinstance(premier, str):
            return ReponseIA(source="liste", texte=premier)
        return ReponseIA(source="inconnu", texte=_en_texte(payload))
    if isinstance(payload, dict) and "output" in payload:
        return ReponseIA(source="output", texte=_en_texte(payload["output"]))
    return ReponseIA(source="inconnu", texte=_en_texte(payload))


class WebhookClient:
    def __init__(self, url: Optional[str], timeout: Optional[float] = None, nom: str = "webhook IA"):
        self.url = url
        self.nom = nom
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.HTTP_TIMEOUT_SECONDS)

    async def _get_json(self, message: str) -> Any:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(self.url, params={"message": message}) as response:
                response.raise_for_status()
                texte = await response.text()
        try:
            return json.loads(texte)
        except ValueError:
            # Réponse en texte brut
            return texte

    async def ask(self, message: str) -> ReponseIA:
        if not self.url:
            raise ExternalServiceException(f"Le {self.nom} n'est pas configuré")
        try:
            payload = await self._get_json(message)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Erreur lors de l'appel au {self.nom} : {str(e)}")
            raise ExternalServiceException(f"Erreur lors de la génération de la réponse : {str(e) or type(e).__name__}") from e
        reponse = decode_webhook_payload(payload)
        logger.info(f"Réponse du {self.nom} décodée (forme : {reponse.source})")
        return reponse


def get_response_webhook() -> WebhookClient:
    return WebhookClient(settings.AI_RESPONSE_WEBHOOK_URL, nom="webhook de réponse IA")


def get_chatbot_webhook() -> WebhookClient:
    return WebhookClient(settings.CHATBOT_WEBHOOK_URL, nom="webhook assistant")
