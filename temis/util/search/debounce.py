import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Set

logger = logging.getLogger(__name__)

Fetch = Callable[[str, int], Awaitable[Sequence[Any]]]
OnResults = Callable[[str, List[Any]], Any]


class DebouncedSearch:
    """Champ de recherche incrémentale avec temporisation.

    Chaque saisie réarme un minuteur unique ; la requête part quand la saisie
    se stabilise pendant ``delay`` secondes. Un terme plus court que
    ``min_length`` vide les résultats sans interroger la base. Les requêtes
    déjà parties ne sont pas annulées, mais une réponse dont le terme ne
    correspond plus à la saisie courante est ignorée.
    """

    def __init__(
        self,
        fetch: Fetch,
        delay: float = 0.3,
        min_length: int = 2,
        limit: int = 5,
        on_results: Optional[OnResults] = None,
    ):
        self.fetch = fetch
        self.delay = delay
        self.min_length = min_length
        self.limit = limit
        self.on_results = on_results

        self.term = ""
        self.results: List[Any] = []
        self.is_open = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Future] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _track(self, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _emit(self) -> None:
        if self.on_results is None:
            return
        resultat = self.on_results(self.term, list(self.results))
        if inspect.isawaitable(resultat):
            self._track(resultat)

    def input(self, term: str) -> None:
        self.term = term or ""
        self.is_open = True
        self._cancel_timer()

        if len(self.term.strip()) < self.min_length:
            self.results = []
            self._emit()
            return

        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay, self._launch, self.term)

    def _launch(self, term: str) -> None:
        self._timer = None
        self._track(self._run(term))

    async def _run(self, term: str) -> None:
        logger.debug(f"[RECHERCHE] Requête pour {term!r}")
        try:
            resultats = await self.fetch(term.strip(), self.limit)
        except Exception:
            logger.exception(f"[RECHERCHE] Échec de la recherche pour {term!r}")
            resultats = []

        if term != self.term:
            logger.debug(f"[RECHERCHE] Résultats obsolètes ignorés pour {term!r} (saisie courante : {self.term!r})")
            return
        self.results = list(resultats)[: self.limit]
        self._emit()

    def select(self, item: Any) -> Any:
        self._cancel_timer()
        self.term = ""
        self.results = []
        self.is_open = False
        return item

    def close(self) -> None:
        self.is_open = False

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self._cancel_timer()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self.is_open = False
