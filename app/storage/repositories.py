from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.exceptions.custom_errors import AllocationRunNotFoundError, RuleNotFoundError
from app.models.rules import BusinessRule
from app.storage.database import AllocationRunModel, RuleModel


class RuleRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, rule_id: str) -> Optional[BusinessRule]:
        model = self.db.query(RuleModel).filter(RuleModel.id == rule_id).first()
        if not model:
            return None
        return self._model_to_rule(model)

    def get(self, rule_id: str) -> BusinessRule:
        rule = self.get_by_id(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule {rule_id} not found")
        return rule

    def list_all(self) -> List[BusinessRule]:
        """Rules in insertion order."""
        models = self.db.query(RuleModel).order_by(RuleModel.seq).all()
        return [self._model_to_rule(m) for m in models]

    def save(self, rule: BusinessRule) -> BusinessRule:
        """Insert or replace; a replaced rule keeps its original insertion position."""
        existing = self.db.query(RuleModel).filter(RuleModel.id == rule.id).first()
        if existing:
            existing.type = rule.type.value
            existing.name = rule.name
            existing.description = rule.description
            existing.parameters = rule.parameters.to_record()
            existing.priority = rule.priority
            existing.enabled = rule.enabled
        else:
            seq = (self.db.query(func.max(RuleModel.seq)).scalar() or 0) + 1
            model = RuleModel(
                id=rule.id,
                seq=seq,
                type=rule.type.value,
                name=rule.name,
                description=rule.description,
                parameters=rule.parameters.to_record(),
                priority=rule.priority,
                enabled=rule.enabled,
            )
            self.db.add(model)
        self.db.commit()
        return rule

    def update(self, rule: BusinessRule) -> BusinessRule:
        if self.get_by_id(rule.id) is None:
            raise RuleNotFoundError(f"Rule {rule.id} not found")
        return self.save(rule)

    def delete(self, rule_id: str) -> None:
        deleted = self.db.query(RuleModel).filter(RuleModel.id == rule_id).delete()
        self.db.commit()
        if not deleted:
            raise RuleNotFoundError(f"Rule {rule_id} not found")

    @staticmethod
    def _model_to_rule(model: RuleModel) -> BusinessRule:
        return BusinessRule.from_record(
            {
                "id": model.id,
                "type": model.type,
                "name": model.name,
                "description": model.description,
                "parameters": model.parameters,
                "priority": model.priority,
                "enabled": model.enabled,
            }
        )


class AllocationRunRepository:
    def __init__(self, db: Session):
        self.db = db

    def save_run(self, run_id: str, request_hash: str, result: Dict) -> None:
        model = AllocationRunModel(id=run_id, request_hash=request_hash, result=result)
        self.db.add(model)
        self.db.commit()

    def get_run(self, run_id: str) -> Dict:
        model = self.db.query(AllocationRunModel).filter(AllocationRunModel.id == run_id).first()
        if not model:
            raise AllocationRunNotFoundError(f"Allocation run {run_id} not found")
        return {
            "runId": model.id,
            "requestHash": model.request_hash,
            "createdAt": model.created_at.isoformat() if model.created_at else None,
            **model.result,
        }
