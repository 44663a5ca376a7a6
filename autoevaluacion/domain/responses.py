from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence

from .models import Answer, Chapter


class ResponseMap:
    """
    Responses of one assessment keyed by indicator id.

    Recording a response for an indicator that already has one replaces it;
    no history is kept.
    """

    def __init__(self, answers: Iterable[Answer] = ()):
        self._answers: dict[int, Answer] = {}
        for answer in answers:
            self.record(answer)

    def record(self, answer: Answer) -> Answer | None:
        previous = self._answers.get(answer.id_indicador)
        self._answers[answer.id_indicador] = answer
        return previous

    def get(self, indicator_id: int) -> Answer | None:
        return self._answers.get(indicator_id)

    def retain(self, indicator_ids: Iterable[int]) -> list[int]:
        """Drop every response outside ``indicator_ids``; returns the dropped ids."""
        keep = set(indicator_ids)
        dropped = [i for i in self._answers if i not in keep]
        for indicator_id in dropped:
            del self._answers[indicator_id]
        return dropped

    def __contains__(self, indicator_id: object) -> bool:
        return indicator_id in self._answers

    def __len__(self) -> int:
        return len(self._answers)

    def __iter__(self) -> Iterator[Answer]:
        return iter(self._answers.values())

    def points(self) -> dict[int, int]:
        """indicator id -> points, the shape the scorer consumes."""
        return {a.id_indicador: a.puntos for a in self._answers.values()}

    def level_pairs(self) -> list[dict[str, int]]:
        """Full snapshot in the backend's upsert shape."""
        return [
            {"id_indicador": a.id_indicador, "id_nivel_respuesta": a.id_nivel_respuesta}
            for a in self._answers.values()
        ]

    @classmethod
    def from_level_pairs(
        cls,
        pairs: Sequence[tuple[int, int]],
        structure: Sequence[Chapter],
        logger: logging.Logger | None = None,
    ) -> ResponseMap:
        """
        Rebuild a map from (indicator, level) pairs returned by the backend.

        Duplicate indicators keep their last occurrence. Pairs that point at
        an indicator or level missing from ``structure`` are skipped.
        """
        log = logger or logging.getLogger(__name__)
        index = {
            ind.id_indicador: (chapter.id_capitulo, ind)
            for chapter in structure
            for ind in chapter.indicadores
        }

        responses = cls()
        seen: set[int] = set()
        for indicator_id, level_id in pairs:
            if indicator_id in seen:
                log.warning("Duplicate response for indicator %s; keeping last", indicator_id)
            seen.add(indicator_id)

            located = index.get(indicator_id)
            if located is None:
                log.warning("Response for unknown indicator %s ignored", indicator_id)
                continue
            chapter_id, indicator = located
            level = indicator.level(level_id)
            if level is None:
                log.warning(
                    "Response level %s not defined for indicator %s; ignored",
                    level_id,
                    indicator_id,
                )
                continue
            responses.record(Answer(chapter_id, indicator_id, level_id, level.puntos))
        return responses
