import logging
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import ValidationError as RequestValidationError
from sqlalchemy.orm import Session

from app.api.schemas import (
    AllocateRequest,
    BusinessRuleDTO,
    ExportRequest,
    GenerateRuleRequest,
    IngestRequest,
    RulePatchDTO,
    SearchRequest,
    ValidateRequest,
    rules_to_domain,
)
from app.config.settings import get_settings
from app.engine.allocator import allocate
from app.engine.validator import summarize, validate, validate_rules
from app.exceptions.custom_errors import BlockingValidationError
from app.ingest.normalize import FIELD_ALIASES, normalize_rows
from app.models.entities import ENTITY_CLASSES, EntityType, Severity, records
from app.models.rules import BusinessRule
from app.services.column_mapping import select_column_mapper
from app.services.rule_generation import select_rule_generator
from app.services.search import run_filters, select_search
from app.services.text_generation import TextGenerator, get_text_generator
from app.storage.cache import AllocationCache, get_cache
from app.storage.database import get_db
from app.storage.repositories import AllocationRunRepository, RuleRepository

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_generator() -> Optional[TextGenerator]:
    return get_text_generator()


def close_generator() -> None:
    """Release the shared generator's HTTP client, if one was created."""
    if get_generator.cache_info().currsize:
        generator = get_generator()
        if generator is not None:
            generator.close()
    get_generator.cache_clear()


def _merge_rules(stored: List[BusinessRule], requested: List[BusinessRule]) -> List[BusinessRule]:
    """Stored rules first (insertion order), minus any the request redefines."""
    requested_ids = {r.id for r in requested}
    return [r for r in stored if r.id not in requested_ids] + requested


@router.post("/validate", summary="Validate clients, workers and tasks")
def validate_endpoint(req: ValidateRequest):
    """
    Run the data-integrity checks.

    Errors are data, never failures: the response always has status 200 with
    `errors` (ValidationError records) and a `summary` of counts by entity and
    severity. When `rules` are supplied, rule-vs-data conflicts are included.
    """
    clients, workers, tasks = req.entities()
    logger.info(f"Validate request: {len(clients)} clients, {len(workers)} workers, {len(tasks)} tasks")

    errors = validate(clients, workers, tasks)
    if req.rules is not None:
        errors += validate_rules(rules_to_domain(req.rules), clients, workers, tasks)
    return {"errors": records(errors), "summary": summarize(errors)}


@router.post("/allocate", summary="Allocate tasks to workers and phases")
def allocate_endpoint(
    req: AllocateRequest,
    db: Session = Depends(get_db),
    cache: AllocationCache = Depends(get_cache),
    block_on_critical: bool = Query(False, description="Reject with 422 when critical validation errors exist"),
    include_stored_rules: bool = Query(False, description="Apply rules from the rule store as well"),
):
    """
    Greedy, deterministic allocation.

    **Returns:** `assignments`, `unassignedTasks`, `violations`, `metrics`,
    plus `runId` (retrievable via GET /allocations/{runId}) and `cached`.

    Identical requests hit the cache since the allocator is deterministic.

    **Error Handling:**
    - 422: malformed request, or critical validation errors with `block_on_critical`
    """
    clients, workers, tasks = req.entities()
    rules = rules_to_domain(req.rules)
    if include_stored_rules:
        rules = _merge_rules(RuleRepository(db).list_all(), rules)
    priorities = req.priorities.to_domain()
    cost_model = req.cost_model or settings.cost_model

    logger.info(f"Allocate request: {len(tasks)} tasks, {len(workers)} workers, {len(rules)} rules")

    if block_on_critical:
        critical = [e for e in validate(clients, workers, tasks) if e.severity is Severity.CRITICAL]
        if critical:
            logger.warning(f"Allocation blocked by {len(critical)} critical validation errors")
            raise BlockingValidationError(critical)

    request_hash = AllocationCache.hash_request(
        {
            "clients": records(clients),
            "workers": records(workers),
            "tasks": records(tasks),
            "rules": [r.to_record() for r in rules],
            "priorities": priorities.to_record(),
            "costModel": cost_model,
        }
    )
    cached_result = cache.get(request_hash)
    if cached_result:
        logger.info("Cache hit")
        return {**cached_result, "cached": True}

    result = allocate(
        clients, workers, tasks, rules, priorities,
        default_client_priority=settings.default_client_priority,
        cost_model=cost_model,
    )
    record = result.to_record()
    run_id = str(uuid.uuid4())
    AllocationRunRepository(db).save_run(run_id, request_hash, record)

    response = {**record, "runId": run_id}
    cache.set(request_hash, response)
    logger.info(f"Allocation {run_id}: {len(result.assignments)} assigned, {len(result.unassigned_tasks)} unassigned")
    return {**response, "cached": False}


@router.get("/allocations/{run_id}", summary="Fetch a stored allocation run")
def get_allocation(run_id: str, db: Session = Depends(get_db)):
    return AllocationRunRepository(db).get_run(run_id)


@router.get("/rules", summary="List business rules")
def list_rules(db: Session = Depends(get_db)):
    return [r.to_record() for r in RuleRepository(db).list_all()]


@router.post("/rules", status_code=201, summary="Create a business rule")
def create_rule(req: BusinessRuleDTO, db: Session = Depends(get_db)):
    repo = RuleRepository(db)
    rule = req.to_domain()
    if repo.get_by_id(rule.id) is not None:
        raise HTTPException(status_code=409, detail=f"Rule {rule.id} already exists")
    logger.info(f"Creating {rule.type.value} rule {rule.id}")
    return repo.save(rule).to_record()


@router.post("/rules/generate", summary="Generate a business rule from a description")
def generate_rule_endpoint(
    req: GenerateRuleRequest,
    db: Session = Depends(get_db),
    generator: Optional[TextGenerator] = Depends(get_generator),
):
    """
    Translate a plain-language description into a rule.

    Uses the remote text-generation service when configured, with the keyword
    heuristics as fallback. `rule` is null when the description is not
    understood; with `save=true` a generated rule is added to the store.
    """
    rule = select_rule_generator(generator).generate(req.description)
    if rule is None:
        return {"rule": None, "saved": False, "message": "No rule could be derived from the description"}
    if req.save:
        RuleRepository(db).save(rule)
    return {"rule": rule.to_record(), "saved": req.save}


@router.get("/rules/{rule_id}", summary="Fetch a business rule")
def get_rule(rule_id: str, db: Session = Depends(get_db)):
    return RuleRepository(db).get(rule_id).to_record()


@router.patch("/rules/{rule_id}", summary="Update a business rule")
def update_rule(rule_id: str, req: RulePatchDTO, db: Session = Depends(get_db)):
    repo = RuleRepository(db)
    merged = {**repo.get(rule_id).to_record(), **req.model_dump(exclude_none=True, mode="json"), "id": rule_id}
    try:
        rule = BusinessRuleDTO.model_validate(merged).to_domain()
    except RequestValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    logger.info(f"Updating rule {rule_id}")
    return repo.update(rule).to_record()


@router.delete("/rules/{rule_id}", status_code=204, summary="Delete a business rule")
def delete_rule(rule_id: str, db: Session = Depends(get_db)):
    RuleRepository(db).delete(rule_id)
    return Response(status_code=204)


@router.post("/search", summary="Search clients, workers or tasks")
def search(req: SearchRequest, generator: Optional[TextGenerator] = Depends(get_generator)):
    """
    Explicit `entity` + `filters` are applied directly; otherwise the free-text
    `query` goes through the search strategy (remote or keyword).
    """
    clients, workers, tasks = req.entities()
    if req.filters is not None:
        conditions = [f.to_domain() for f in req.filters]
        result = run_filters(req.entity, conditions, clients, workers, tasks)
    else:
        result = select_search(generator).search(req.query, clients, workers, tasks)
    logger.info(f"Search returned {len(result.results)} {result.entity.value} via {result.strategy}")
    return result.to_record()


@router.post("/ingest/{entity}", summary="Map and normalise raw spreadsheet rows")
def ingest(
    entity: EntityType,
    req: IngestRequest,
    generator: Optional[TextGenerator] = Depends(get_generator),
):
    """
    Turn header/row data from the file-ingestion service into canonical records.

    Explicit `mapping` entries win over suggested ones. Headers that map to no
    known field are listed in `unmappedHeaders` and dropped.
    """
    headers = list(dict.fromkeys(h for row in req.rows for h in row))
    mapping: Dict[str, str] = {}
    if req.auto_map:
        mapping.update(select_column_mapper(generator).map_columns(headers, entity))
    mapping.update(req.mapping or {})

    known = set(ENTITY_CLASSES[entity].FIELDS) | set(FIELD_ALIASES)
    unmapped = [h for h in headers if mapping.get(h, h) not in known]
    entities = normalize_rows(entity, req.rows, mapping)
    logger.info(f"Ingested {len(entities)} {entity.value} rows, {len(unmapped)} unmapped headers")
    return {
        "entity": entity.value,
        "mapping": mapping,
        "unmappedHeaders": unmapped,
        "records": records(entities),
    }


@router.post("/export", summary="Build the export package")
def export_package(req: ExportRequest):
    """JSON package for the spreadsheet renderer: data, rules, priorities, optional allocation."""
    clients, workers, tasks = req.entities()
    package = {
        "clients": records(clients),
        "workers": records(workers),
        "tasks": records(tasks),
        "rules": [r.to_record() for r in rules_to_domain(req.rules)],
        "priorities": req.priorities.to_domain().to_record(),
        "metadata": {
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "version": settings.app_version,
            "totalRecords": len(clients) + len(workers) + len(tasks),
        },
    }
    if req.allocation:
        for key in ("assignments", "metrics", "violations", "unassignedTasks"):
            package[key] = req.allocation.get(key, [] if key != "metrics" else {})
    return package
