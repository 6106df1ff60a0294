from __future__ import annotations

from io import StringIO
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from tabulation import __version__
from tabulation.config import load_settings
from tabulation.errors import CompetitionNotFound, FanOutError
from tabulation.log import get_logger
from tabulation.models import CompetitionSnapshot, RankingConfig
from tabulation.ranking import RankedScore, results_frame
from tabulation.session import CompetitionSession
from tabulation.store import ScoreStore

log = get_logger("api")

app = FastAPI(title="pageant-tabulation", version=__version__)


# -----------------------
# Request bodies
# -----------------------
class ScoreIn(BaseModel):
    segment_id: str = Field(alias="segmentId")
    contestant_id: str = Field(alias="contestantId")
    judge_id: str = Field(alias="judgeId")
    criterion_id: str = Field(alias="criterionId")
    score: float


class ScoreKey(BaseModel):
    segment_id: str = Field(alias="segmentId")
    contestant_id: str = Field(alias="contestantId")
    judge_id: str = Field(alias="judgeId")
    criterion_id: str = Field(alias="criterionId")


class CriterionRef(BaseModel):
    segment_id: str = Field(alias="segmentId")
    criterion_id: str = Field(alias="criterionId")


class CarryForwardIn(BaseModel):
    segment_id: str = Field(alias="segmentId")
    criterion_id: str = Field(alias="criterionId")
    source_segments: Optional[List[str]] = Field(default=None, alias="sourceSegments")
    scaling_factor: float = Field(default=1.0, alias="scalingFactor")
    calculation_method: str = Field(default="rawAverage", alias="calculationMethod")


class PrejudgedIn(BaseModel):
    segment_id: str = Field(alias="segmentId")
    # contestant -> criterion -> raw score
    raw_scores: Dict[str, Dict[str, float]] = Field(default_factory=dict, alias="rawScores")
    max_raw_scores: Dict[str, float] = Field(default_factory=dict, alias="maxRawScores")


class ResetIn(BaseModel):
    preserve_prejudged: bool = Field(default=True, alias="preservePrejudged")


class FinalizeIn(BaseModel):
    segment_id: str = Field(alias="segmentId")


class MinorAwardIn(BaseModel):
    name: str = ""
    criteria: List[CriterionRef]


# -----------------------
# App wiring
# -----------------------
@app.on_event("startup")
def _startup():
    store = ScoreStore(load_settings().db_path)
    store.init_db()
    app.state.store = store
    log.info("Using database %s", store.path)


@app.exception_handler(CompetitionNotFound)
def _not_found(request: Request, exc: CompetitionNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(FanOutError)
def _fan_out_failed(request: Request, exc: FanOutError):
    return JSONResponse(status_code=502, content={"detail": str(exc), "failedJudges": exc.failed_judges})


def load_session(competition_id: int) -> CompetitionSession:
    return CompetitionSession.load(app.state.store, competition_id)


def ranked_json(results: Dict[str, RankedScore]) -> Dict[str, Dict[str, float]]:
    return {c: r.to_dict() for c, r in results.items()}


# -----------------------
# Competitions
# -----------------------
@app.get("/")
def home():
    return {"name": "pageant-tabulation", "version": __version__}


@app.get("/competitions")
def list_competitions():
    return app.state.store.list_competitions()


@app.post("/competitions", status_code=201)
def create_competition(payload: Dict[str, Any] = Body(...)):
    try:
        snapshot = CompetitionSnapshot.from_dict(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(400, f"Invalid competition: {e}")
    if "ranking" not in (payload.get("competitionSettings") or {}):
        snapshot.settings.ranking.trim_percentage = load_settings().default_trim_percentage
    competition_id = app.state.store.create_competition(snapshot)
    return {"id": competition_id}


@app.get("/competitions/{competition_id}")
def read_competition(competition_id: int):
    return app.state.store.fetch_competition(competition_id).to_dict()


@app.put("/competitions/{competition_id}/ranking")
def set_ranking(competition_id: int, payload: Dict[str, Any] = Body(...)):
    session = load_session(competition_id)
    try:
        config = RankingConfig.from_dict(payload)
    except (TypeError, ValueError) as e:
        raise HTTPException(400, str(e))
    session.set_ranking_config(config)
    return config.to_dict()


@app.delete("/competitions/{competition_id}/segments/{segment_id}")
def remove_segment(competition_id: int, segment_id: str):
    session = load_session(competition_id)
    if not session.remove_segment(segment_id):
        raise HTTPException(404, "Segment not found.")
    return {"removed": segment_id}


# -----------------------
# Judge commands
# -----------------------
@app.get("/competitions/{competition_id}/scores")
def list_scores(competition_id: int):
    return app.state.store.fetch_scores(competition_id)


@app.post("/competitions/{competition_id}/scores")
def submit_score(competition_id: int, body: ScoreIn):
    session = load_session(competition_id)
    accepted = session.submit_score(body.judge_id, body.segment_id, body.contestant_id, body.criterion_id, body.score)
    if not accepted:
        raise HTTPException(400, "Score rejected: criterion not open for this judge or value invalid.")
    return {
        "accepted": True,
        "score": session.aggregate.get_score(body.segment_id, body.contestant_id, body.judge_id, body.criterion_id),
    }


@app.post("/competitions/{competition_id}/scores/delete")
def delete_score(competition_id: int, body: ScoreKey):
    session = load_session(competition_id)
    removed = session.delete_score(body.judge_id, body.segment_id, body.contestant_id, body.criterion_id)
    if not removed:
        raise HTTPException(404, "Score not found.")
    return {"deleted": True}


@app.post("/competitions/{competition_id}/scores/reset")
def reset_scores(competition_id: int, body: Optional[ResetIn] = None):
    preserve = True if body is None else body.preserve_prejudged
    removed = load_session(competition_id).reset_scores(preserve_prejudged=preserve)
    return {"removed": removed, "preservedPrejudged": preserve}


@app.post("/competitions/{competition_id}/judges/{judge_id}/finalize")
def finalize_judge(competition_id: int, judge_id: str, body: FinalizeIn):
    session = load_session(competition_id)
    try:
        session.finalize_judge(judge_id, body.segment_id)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"judgeId": judge_id, "segmentId": body.segment_id, "finalized": True}


# -----------------------
# Active criteria
# -----------------------
@app.post("/competitions/{competition_id}/active-criteria/toggle")
def toggle_criterion(competition_id: int, body: CriterionRef):
    session = load_session(competition_id)
    active = session.toggle_criterion(body.segment_id, body.criterion_id)
    return {"active": active, "activeCriteria": [a.to_dict() for a in session.gate.items()]}


@app.delete("/competitions/{competition_id}/active-criteria")
def clear_active_criteria(competition_id: int):
    load_session(competition_id).clear_active_criteria()
    return {"activeCriteria": []}


# -----------------------
# Results
# -----------------------
@app.get("/competitions/{competition_id}/segments/{segment_id}/rankings")
def segment_rankings(competition_id: int, segment_id: str):
    session = load_session(competition_id)
    try:
        groups = session.segment_rankings(segment_id)
    except ValueError as e:
        raise HTTPException(404, str(e))
    return {"method": session.settings.ranking.method, "groups": {g: ranked_json(r) for g, r in groups.items()}}


@app.get("/competitions/{competition_id}/segments/{segment_id}/rankings.csv")
def download_segment_rankings(competition_id: int, segment_id: str):
    session = load_session(competition_id)
    try:
        groups = session.segment_rankings(segment_id)
    except ValueError as e:
        raise HTTPException(404, str(e))

    buf = StringIO()
    first = True
    for group, results in groups.items():
        df = results_frame(results, session.contestants)
        df.insert(0, "Group", group)
        df.to_csv(buf, index=False, header=first)
        first = False
    return Response(
        content=buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="competition_{competition_id}_{segment_id}_rankings.csv"'},
    )


@app.post("/competitions/{competition_id}/segments/{segment_id}/advance")
def advance_contestants(competition_id: int, segment_id: str):
    session = load_session(competition_id)
    try:
        advanced = session.advance_contestants(segment_id)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"advanced": advanced}


@app.get("/competitions/{competition_id}/rankings/overall")
def overall_rankings(competition_id: int, segments: Optional[str] = None):
    session = load_session(competition_id)
    segment_ids = [s for s in (segments or "").split(",") if s] or None
    try:
        groups = session.overall_rankings(segment_ids)
    except ValueError as e:
        raise HTTPException(404, str(e))
    return {"method": session.settings.ranking.method, "groups": {g: ranked_json(r) for g, r in groups.items()}}


@app.post("/competitions/{competition_id}/minor-awards")
def minor_awards(competition_id: int, body: MinorAwardIn):
    session = load_session(competition_id)
    try:
        results = session.minor_awards([(c.segment_id, c.criterion_id) for c in body.criteria])
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"name": body.name, "results": [r.to_dict() for r in results]}


# -----------------------
# Derived scores
# -----------------------
def _configure_carry_forward(session: CompetitionSession, body: CarryForwardIn) -> None:
    if body.source_segments is not None:
        session.configure_carry_forward(
            body.segment_id, body.criterion_id, body.source_segments,
            scaling_factor=body.scaling_factor, calculation_method=body.calculation_method,
        )


@app.post("/competitions/{competition_id}/carry-forward/preview")
def preview_carry_forward(competition_id: int, body: CarryForwardIn):
    session = load_session(competition_id)
    try:
        previews = session.preview_carry_forward(
            body.segment_id, body.criterion_id, body.source_segments,
            scaling_factor=body.scaling_factor, calculation_method=body.calculation_method,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {
        c: {"score": p.score, "rawAverage": p.raw_average, "judgeTotals": p.judge_totals}
        for c, p in previews.items()
    }


@app.post("/competitions/{competition_id}/carry-forward/apply")
def apply_carry_forward(competition_id: int, body: CarryForwardIn):
    session = load_session(competition_id)
    try:
        _configure_carry_forward(session, body)
        values = session.apply_carry_forward(body.segment_id, body.criterion_id)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"applied": values}


@app.post("/competitions/{competition_id}/prejudged")
def apply_prejudged(competition_id: int, body: PrejudgedIn):
    session = load_session(competition_id)
    try:
        committed = session.apply_prejudged(body.segment_id, body.raw_scores, body.max_raw_scores)
    except (KeyError, ValueError) as e:
        raise HTTPException(400, str(e))
    return {"applied": committed}
