import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from temis.api.schema import Coordonnees, Itineraire
from temis.util.db.setting import settings

logger = logging.getLogger(__name__)


class GeoService:
    """Géocodage et itinéraires routiers via l'API OpenRouteService.

    Chaque appel dégrade vers ``None`` en cas d'échec : la carte d'une
    formation reste affichable même si une adresse ou un trajet manque.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.ORS_API_KEY
        self.base_url = (base_url or settings.ORS_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.HTTP_TIMEOUT_SECONDS)

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(f"{self.base_url}{path}", params=params) as response:
                response.raise_for_status()
                return await response.json()

    async def geocode(self, adresse: str) -> Optional[Coordonnees]:
        if not self.api_key:
            logger.warning("ORS_API_KEY non configurée : géocodage désactivé")
            return None
        try:
            data = await self._get_json(
                "/geocode/search",
                {"api_key": self.api_key, "text": adresse, "size": 1},
            )
            features = data.get("features") or []
            if not features:
                logger.info(f"Aucun résultat de géocodage pour : {adresse}")
                return None
            lon, lat = features[0]["geometry"]["coordinates"][:2]
            return Coordonnees(lat=lat, lon=lon)
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Erreur de géocodage pour {adresse!r} : {str(e)}")
            return None

    async def route(self, depart: Coordonnees, arrivee: Coordonnees) -> Optional[Itineraire]:
        if not self.api_key:
            logger.warning("ORS_API_KEY non configurée : calcul d'itinéraire désactivé")
            return None
        try:
            data = await self._get_json(
                "/v2/directions/driving-car",
                {
                    "api_key": self.api_key,
                    "start": f"{depart.lon},{depart.lat}",
                    "end": f"{arrivee.lon},{arrivee.lat}",
                },
            )
            features = data.get("features") or []
            if not features:
                logger.info("Aucun itinéraire trouvé")
                return None
            feature = features[0]
            distance_m = feature["properties"]["segments"][0]["distance"]
            trace = [
                Coordonnees(lat=point[1], lon=point[0])
                for point in feature.get("geometry", {}).get("coordinates", [])
            ]
            return Itineraire(distance_km=round(distance_m / 1000), trace=trace)
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Erreur de calcul d'itinéraire : {str(e)}")
            return None


def get_geo_service() -> GeoService:
    return GeoService()
