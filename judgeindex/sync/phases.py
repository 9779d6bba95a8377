"""
Per-phase sync steps for one judge.

Each step pulls one resource family from the provider and upserts it keyed by
the provider's ids, so a step interrupted half way can simply be run again.
Provider errors propagate; the orchestrator decides what they mean for the run.
"""

from datetime import date
from typing import Any, Awaitable, Callable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from judgeindex.datasource.base import Page
from judgeindex.datasource.courtlistener import (
    CourtListenerSource,
    Docket,
    OpinionCluster,
    Position,
)
from judgeindex.datastore.repositories import (
    CaseRepository,
    CourtRepository,
    JudgeDetailsRepository,
    JudgeRepository,
)
from judgeindex.sync.progress import SyncProgressStore
from judgeindex.sync.types import SyncPhase

JUDICIAL_POSITION_TYPES = {"jud", "jus", "c-jus", "ass-jus", "pres-jud", "c-jud", "act-jud"}


def lookback_start(years: int, today: date | None = None) -> date:
    today = today or date.today()
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return today.replace(year=today.year - years, day=28)


def _current_position(positions: list[Position]) -> Position | None:
    """The judge's most relevant seat: open judicial positions first, then latest."""
    if not positions:
        return None

    def sort_key(p: Position) -> tuple[int, int, date]:
        judicial = 1 if (p.position_type or "") in JUDICIAL_POSITION_TYPES else 0
        current = 1 if p.date_termination is None else 0
        return (current, judicial, p.date_start or date.min)

    return max(positions, key=sort_key)


class PhaseRunner:
    """
    Runs a single phase for a single judge.

    Usage:
        runner = PhaseRunner(source, session_factory, store)
        await runner.run(SyncPhase.POSITIONS, "1234")
    """

    def __init__(
        self,
        source: CourtListenerSource,
        session_factory: async_sessionmaker[AsyncSession],
        store: SyncProgressStore,
        max_pages: int = 5,
        lookback_years: int = 5,
    ):
        self.source = source
        self._session_factory = session_factory
        self.store = store
        self.max_pages = max_pages
        self.lookback_years = lookback_years

        self._steps: dict[SyncPhase, Callable[[str], Awaitable[dict[str, Any]]]] = {
            SyncPhase.DISCOVERY: self.sync_profile,
            SyncPhase.POSITIONS: self.sync_positions,
            SyncPhase.DETAILS: self.sync_details,
            SyncPhase.OPINIONS: self.sync_opinions,
            SyncPhase.DOCKETS: self.sync_dockets,
        }

    async def run(self, phase: SyncPhase, entity_id: str) -> None:
        """Run ``phase`` for ``entity_id`` and record it as completed."""
        step = self._steps.get(phase)
        if step is None:
            return
        updates = await step(entity_id)
        await self.store.advance(entity_id, phase, **updates)

    async def _collect(self, fetch_page: Callable[[str | None], Awaitable[Page[Any]]]) -> list[Any]:
        items: list[Any] = []
        async for page in self.source.iter_pages(fetch_page, self.max_pages):
            items.extend(page.results)
        return items

    async def sync_profile(self, entity_id: str) -> dict[str, Any]:
        """Fetch the person record unless discovery already stored a profile."""
        async with self._session_factory() as session:
            judge = await JudgeRepository(session).get(entity_id)
        if judge is not None and judge.name:
            return {}

        person = await self.source.get_person(entity_id)
        async with self._session_factory.begin() as session:
            await JudgeRepository(session).upsert(
                entity_id,
                name=person.full_name or f"Judge {entity_id}",
                gender=person.gender or "",
                date_of_birth=person.date_dob,
            )
        return {}

    async def sync_positions(self, entity_id: str) -> dict[str, Any]:
        positions: list[Position] = await self._collect(
            lambda cursor: self.source.list_positions(entity_id, cursor=cursor)
        )

        async with self._session_factory.begin() as session:
            details = JudgeDetailsRepository(session)
            for position in positions:
                await details.upsert_position(
                    position.id,
                    judge_id=entity_id,
                    court_id=position.court,
                    position_type=position.position_type or "",
                    appointer=position.appointer or "",
                    how_selected=position.how_selected or "",
                    date_start=position.date_start,
                    date_termination=position.date_termination,
                )

            current = _current_position(positions)
            if current is not None:
                judge_fields: dict[str, Any] = {
                    "appointed_date": current.date_start,
                    "appointer": current.appointer or "",
                }
                if current.court:
                    court = await CourtRepository(session).get(current.court)
                    judge_fields["court_id"] = current.court
                    if court is not None:
                        judge_fields["court_name"] = court.name
                        judge_fields["jurisdiction"] = court.jurisdiction
                await JudgeRepository(session).update_fields(entity_id, **judge_fields)

        logger.debug(f"Synced {len(positions)} positions for judge {entity_id}")
        return {"has_positions": bool(positions)}

    async def sync_details(self, entity_id: str) -> dict[str, Any]:
        educations = await self._collect(
            lambda cursor: self.source.list_educations(entity_id, cursor=cursor)
        )
        affiliations = await self._collect(
            lambda cursor: self.source.list_political_affiliations(entity_id, cursor=cursor)
        )

        async with self._session_factory.begin() as session:
            details = JudgeDetailsRepository(session)
            for education in educations:
                await details.upsert_education(
                    education.id,
                    judge_id=entity_id,
                    school=education.school,
                    degree_level=education.degree_level,
                    degree_detail=education.degree_detail,
                    degree_year=education.degree_year,
                )
            for affiliation in affiliations:
                await details.upsert_affiliation(
                    affiliation.id,
                    judge_id=entity_id,
                    political_party=affiliation.political_party,
                    source=affiliation.source,
                    date_start=affiliation.date_start,
                    date_end=affiliation.date_end,
                )

            judge_fields: dict[str, Any] = {}
            if educations:
                judge_fields["education_summary"] = "; ".join(
                    " ".join(filter(None, [e.degree_level.upper(), e.school])) for e in educations
                )
            if affiliations:
                latest = max(affiliations, key=lambda a: a.date_start or date.min)
                judge_fields["political_party"] = latest.political_party
            if judge_fields:
                await JudgeRepository(session).update_fields(entity_id, **judge_fields)

        return {
            "has_education": bool(educations),
            "has_political_affiliations": bool(affiliations),
        }

    async def sync_opinions(self, entity_id: str) -> dict[str, Any]:
        since = lookback_start(self.lookback_years)
        clusters: list[OpinionCluster] = await self._collect(
            lambda cursor: self.source.list_opinions(entity_id, filed_after=since, cursor=cursor)
        )

        async with self._session_factory.begin() as session:
            judge = await JudgeRepository(session).get(entity_id)
            court_id = judge.court_id if judge else None
            cases = CaseRepository(session)
            for cluster in clusters:
                await cases.upsert(
                    f"opinion:{cluster.id}",
                    entity_id,
                    source="opinion",
                    court_id=court_id,
                    case_name=cluster.case_name,
                    case_number=cluster.docket_id or "",
                    case_type=cluster.nature_of_suit,
                    status="decided",
                    outcome=cluster.disposition,
                    summary=cluster.summary or cluster.syllabus,
                    filing_date=cluster.date_filed,
                    decision_date=cluster.date_filed,
                )
            opinions_count = await cases.count_for_judge(entity_id, source="opinion")
            total = await cases.count_for_judge(entity_id)
            await JudgeRepository(session).update_fields(entity_id, total_cases=total)

        logger.debug(f"Synced {len(clusters)} opinion clusters for judge {entity_id}")
        return {"opinions_count": opinions_count}

    async def sync_dockets(self, entity_id: str) -> dict[str, Any]:
        since = lookback_start(self.lookback_years)
        dockets: list[Docket] = await self._collect(
            lambda cursor: self.source.list_dockets(entity_id, filed_after=since, cursor=cursor)
        )

        async with self._session_factory.begin() as session:
            cases = CaseRepository(session)
            for docket in dockets:
                await cases.upsert(
                    f"docket:{docket.id}",
                    entity_id,
                    source="docket",
                    court_id=docket.court_id,
                    case_name=docket.case_name,
                    case_number=docket.docket_number,
                    case_type=docket.nature_of_suit or docket.cause,
                    status="closed" if docket.date_terminated else "pending",
                    filing_date=docket.date_filed,
                    decision_date=docket.date_terminated,
                )
            dockets_count = await cases.count_for_judge(entity_id, source="docket")
            total = await cases.count_for_judge(entity_id)
            await JudgeRepository(session).update_fields(entity_id, total_cases=total)

        logger.debug(f"Synced {len(dockets)} dockets for judge {entity_id}")
        return {"dockets_count": dockets_count}
