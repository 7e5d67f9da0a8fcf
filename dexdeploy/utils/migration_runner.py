import heapq
import importlib.util
import os
import re
import time
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from dexdeploy.utils import log
from dexdeploy.utils.deploy_args import DeployArgs
from dexdeploy.utils.errors import (CycleError, DexDeployError, StepExecutionError,
                                    UnknownDependencyError)
from dexdeploy.utils.ledger import COMPLETED, FAILED
from dexdeploy.utils.migration import Migration, MigrationStep


class StepStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    NOT_RUN = "not_run"


@dataclass
class StepOutcome:
    tag: str
    status: StepStatus = StepStatus.NOT_RUN
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    error: Optional[BaseException] = None
    warnings: list = field(default_factory=list)


@dataclass
class RunResult:
    outcomes: list = field(default_factory=list)
    failure: Optional[StepExecutionError] = None
    spent: int = 0

    @property
    def ok(self):
        return self.failure is None

    @property
    def failed_tag(self):
        return self.failure.tag if self.failure else None

    @property
    def statuses(self):
        return {o.tag: o.status for o in self.outcomes}

    @property
    def warnings(self):
        return [w for o in self.outcomes for w in o.warnings]

    def outcome(self, tag):
        return next(o for o in self.outcomes if o.tag == tag)

    def raise_for_failure(self):
        if self.failure:
            raise self.failure


def load_steps(migrations_dir):
    """
    Loads every migration script in `migrations_dir`. Script filenames are
    prefixed with a number that sets declaration order. Each script exports
    `tag`, `dependencies`, optional `outputs` and a `migrate(migration)`
    function.
    """
    numbered = []
    for file in os.listdir(migrations_dir):
        # number of the filename is the initial string of digits,
        # up to the first non-digit character
        match = re.fullmatch(r"(\d+).*\.py$", file)
        if match:
            numbered.append((int(match.group(1)), file))

    # sort order of `os.listdir` is not guaranteed
    steps = []
    for number, file in sorted(numbered):
        filename = os.path.join(migrations_dir, file)
        spec = importlib.util.spec_from_file_location(f"migration_{number}", filename)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        steps.append(MigrationStep(
            tag=getattr(module, "tag", file[:-3]),
            run=module.migrate,
            dependencies=tuple(getattr(module, "dependencies", ())),
            outputs=getattr(module, "outputs", ()),
            filename=filename,
        ))
    return steps


def select_steps(steps, tags):
    """
    Restricts `steps` to `tags` and everything they transitively depend on,
    keeping declaration order.
    """
    by_tag = {step.tag: step for step in steps}
    selected = set()
    pending = list(tags)
    while pending:
        tag = pending.pop()
        if tag in selected:
            continue
        if tag not in by_tag:
            raise UnknownDependencyError("<selection>", tag)
        selected.add(tag)
        pending.extend(by_tag[tag].dependencies)
    return [step for step in steps if step.tag in selected]


def execution_order(steps):
    """
    Topological order of `steps`; independent steps keep declaration order.
    Raises `UnknownDependencyError` or `CycleError` for a malformed graph.
    """
    position = {}
    for index, step in enumerate(steps):
        if step.tag in position:
            raise DexDeployError(f"Migration step tag `{step.tag}` is declared twice")
        position[step.tag] = index

    indegree = {}
    dependents = defaultdict(list)
    for step in steps:
        dependencies = set(step.dependencies)
        for dependency in dependencies:
            if dependency not in position:
                raise UnknownDependencyError(step.tag, dependency)
            dependents[dependency].append(step.tag)
        indegree[step.tag] = len(dependencies)

    ready = [position[tag] for tag, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    order = []
    while ready:
        step = steps[heapq.heappop(ready)]
        order.append(step)
        for tag in dependents[step.tag]:
            indegree[tag] -= 1
            if indegree[tag] == 0:
                heapq.heappush(ready, position[tag])

    if len(order) != len(steps):
        ordered = {step.tag for step in order}
        raise CycleError([step.tag for step in steps if step.tag not in ordered])
    return order


class MigrationRunner:
    """
    Facilitates the execution of migration steps.
    """

    def __init__(self, deploy_args: DeployArgs, artifacts):
        self.deploy_args = deploy_args
        self.artifacts = artifacts

    def run(self, steps, ledger, force=()):
        """
        Runs `steps` in dependency order against `ledger`, one at a time.

        A step whose outputs are all registered in the ledger is skipped.
        The ledger is flushed after every step, so a crashed run resumes
        from the step that was in flight. The first failing step halts the
        run; it is reported in `RunResult.failure` with its tag and nothing
        after it executes.
        """
        order = execution_order(steps)
        force = set(force)
        result = RunResult()

        for index, step in enumerate(order):
            outcome = StepOutcome(step.tag, started_at=time.perf_counter())
            result.outcomes.append(outcome)

            if step.tag not in force and self._is_done(step, ledger):
                log.h1(f"Skipping migration step `{step.tag}`, its outputs are already registered")
                outcome.status = StepStatus.SKIPPED
                outcome.finished_at = time.perf_counter()
                ledger.flush()
                continue

            log.h1(f"Running migration step `{step.tag}`...")
            migration = Migration(self.deploy_args, ledger, self.artifacts, step.tag, force=step.tag in force)
            try:
                step.run(migration)
                result.spent += migration.end()
            except Exception as exception:
                outcome.status = StepStatus.FAILED
                outcome.error = exception
                outcome.finished_at = time.perf_counter()
                ledger.mark_step(step.tag, FAILED)

                failure = StepExecutionError(step.tag)
                failure.__cause__ = exception
                result.failure = failure
                log.error(str(failure))
                log.error(f"\tException: {exception!r}\n")

                result.outcomes.extend(StepOutcome(s.tag) for s in order[index + 1:])
                break

            outcome.status = StepStatus.COMPLETED
            outcome.warnings = list(migration.warnings)
            outcome.finished_at = time.perf_counter()
            outputs = step.expected_outputs(self.deploy_args)
            ledger.mark_step(step.tag, COMPLETED, outputs)

            missing = [name for name in outputs if not ledger.exists(name)]
            if missing:
                log.warn(f"Step `{step.tag}` completed without registering {missing}")

        return result

    def _is_done(self, step, ledger):
        outputs = step.expected_outputs(self.deploy_args)
        if outputs:
            return all(ledger.is_complete(name) for name in outputs)
        return ledger.step_status(step.tag) == COMPLETED
