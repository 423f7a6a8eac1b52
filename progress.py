import logging
import math
from datetime import datetime
from enum import Enum
from typing import List, Optional

from errors import NotFound, ValidationError
from schemas import Module, ModuleProgress, Outcome, Rejection, UserProgress

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """Round x.5 away from zero for the positive values used in scoring."""
    return int(math.floor(value + 0.5))


class ModuleStage(str, Enum):
    NOT_STARTED = "not_started"
    LESSONS_IN_PROGRESS = "lessons_in_progress"
    QUIZ_ELIGIBLE = "quiz_eligible"
    QUIZ_FAILED = "quiz_failed"
    PRACTICE_ELIGIBLE = "practice_eligible"
    QUIZ_PASSED = "quiz_passed"  # every step done, badge not minted yet
    COMPLETED = "completed"


class ProgressTracker:
    """
    Lesson -> quiz -> practice -> badge progression for one user.

    ``modules`` is the read-only catalog; ``progress`` is the stored aggregate
    and is mutated in place.
    """

    def __init__(self, modules: List[Module], progress: UserProgress):
        self.modules = {module.id: module for module in modules}
        self.progress = progress

    def module(self, module_id: str) -> Module:
        try:
            return self.modules[module_id]
        except KeyError:
            raise NotFound("module", module_id)

    def get(self, module_id: str) -> Optional[ModuleProgress]:
        self.module(module_id)
        return self.progress.modules.get(module_id)

    def _entry(self, module_id: str) -> ModuleProgress:
        entry = self.get(module_id)
        if entry is None:
            entry = ModuleProgress(module_id=module_id)
            self.progress.modules[module_id] = entry
        return entry

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def is_module_unlocked(self, module_id: str, level: int) -> bool:
        return level >= self.module(module_id).required_level

    def is_lesson_completed(self, module_id: str, lesson_id: str) -> bool:
        entry = self.get(module_id)
        return entry is not None and lesson_id in entry.lessons_completed

    def can_take_quiz(self, module_id: str) -> bool:
        module = self.module(module_id)
        entry = self.get(module_id)
        done = set(entry.lessons_completed) if entry else set()
        return done.issuperset(module.lesson_ids)

    def quiz_passed(self, module_id: str) -> bool:
        entry = self.get(module_id)
        return entry is not None and entry.quiz_score is not None and \
            entry.quiz_score >= self.module(module_id).quiz.passing_score

    def is_badge_earnable(self, module_id: str) -> bool:
        module = self.module(module_id)
        if not self.quiz_passed(module_id):
            return False
        if module.practice_task is not None:
            return self.progress.modules[module_id].practice_completed
        return True

    def module_percent(self, module_id: str) -> int:
        module = self.module(module_id)
        entry = self.get(module_id)
        if entry is None:
            return 0

        total = len(module.lessons) + 1 + (1 if module.practice_task else 0)
        completed = len(entry.lessons_completed)
        if self.quiz_passed(module_id):
            completed += 1
        if entry.practice_completed:
            completed += 1
        return round_half_up(100.0 * completed / total)

    def is_module_completed(self, module_id: str) -> bool:
        return self.module_percent(module_id) == 100

    def stage(self, module_id: str) -> ModuleStage:
        module = self.module(module_id)
        entry = self.get(module_id)
        if entry is None or not (entry.lessons_completed or entry.quiz_score is not None):
            return ModuleStage.NOT_STARTED
        if not self.can_take_quiz(module_id):
            return ModuleStage.LESSONS_IN_PROGRESS
        if entry.quiz_score is None:
            return ModuleStage.QUIZ_ELIGIBLE
        if not self.quiz_passed(module_id):
            return ModuleStage.QUIZ_FAILED
        if module.practice_task is not None and not entry.practice_completed:
            return ModuleStage.PRACTICE_ELIGIBLE
        if not entry.badge_minted:
            return ModuleStage.QUIZ_PASSED
        return ModuleStage.COMPLETED

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def score_quiz(self, module_id: str, answers: List[int]) -> int:
        """Percentage of correct answers, one answer index per question in order."""
        questions = self.module(module_id).quiz.questions
        if len(answers) != len(questions):
            raise ValidationError(f"expected {len(questions)} answers, got {len(answers)}")
        correct = sum(1 for question, answer in zip(questions, answers) if answer == question.correct_index)
        return round_half_up(correct / len(questions) * 100)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def complete_lesson(self, module_id: str, lesson_id: str, now: datetime) -> Outcome:
        module = self.module(module_id)
        if lesson_id not in module.lesson_ids:
            raise NotFound("lesson", lesson_id)

        if self.is_lesson_completed(module_id, lesson_id):
            return Outcome.accept(changed=False, message="lesson already completed")
        self._entry(module_id).lessons_completed.append(lesson_id)
        return Outcome.accept()

    def complete_quiz(self, module_id: str, score: int, now: datetime) -> Outcome:
        """Record a quiz result. The latest attempt replaces any earlier score."""
        if not 0 <= score <= 100:
            raise ValidationError("quiz score must be between 0 and 100")
        entry = self._entry(module_id)
        entry.quiz_score = score
        entry.quiz_completed_at = now
        passed = self.quiz_passed(module_id)
        logger.info("Quiz %s scored %d (%s)", module_id, score, "passed" if passed else "failed")
        return Outcome.accept(message="passed" if passed else "failed")

    def complete_practice(self, module_id: str, validated: bool, now: datetime,
                          tx_hash: Optional[str] = None) -> Outcome:
        """``validated`` comes from the external transaction verifier."""
        if self.module(module_id).practice_task is None:
            return Outcome.reject(Rejection.NO_PRACTICE_TASK, "module has no practice task")
        if not validated:
            return Outcome.reject(Rejection.PRACTICE_NOT_VALIDATED, "practice task not validated")

        entry = self._entry(module_id)
        if entry.practice_completed:
            return Outcome.accept(changed=False, message="practice already completed")
        entry.practice_completed = True
        entry.practice_completed_at = now
        entry.practice_tx_hash = tx_hash
        return Outcome.accept()

    def mint_badge(self, module_id: str, now: datetime) -> Outcome:
        """
        Mark the badge as minted locally.

        The flag is set before the chain confirms; ``record_badge_tx`` stores the
        confirmation. A minted-but-unconfirmed badge may be retried.
        """
        if not self.is_badge_earnable(module_id):
            return Outcome.reject(Rejection.BADGE_NOT_EARNED, "module requirements not met")
        entry = self.progress.modules[module_id]
        if entry.badge_tx_hash:
            return Outcome.reject(Rejection.BADGE_ALREADY_MINTED, "badge already on chain")
        if not entry.badge_minted:
            entry.badge_minted = True
            entry.badge_minted_at = now
            return Outcome.accept()
        return Outcome.accept(changed=False, message="retrying chain mint")

    def record_badge_tx(self, module_id: str, tx_hash: str):
        entry = self.get(module_id)
        if entry is None or not entry.badge_minted:
            raise ValidationError(f"badge for {module_id} was not minted locally")
        entry.badge_tx_hash = tx_hash
