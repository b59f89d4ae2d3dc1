from __future__ import annotations

from collections.abc import Mapping

from workflow.statuses import ApplicationStatus, Role

Policy = Mapping[ApplicationStatus, Mapping[ApplicationStatus, Role]]

# Every edge is requested by the employer that owns the job posting.
# Terminal statuses map to an empty set of targets.
APPLICATION_POLICY: Policy = {
    ApplicationStatus.APPLIED: {
        ApplicationStatus.VIEWED: Role.JOBPROVIDER,
        ApplicationStatus.REJECTED: Role.JOBPROVIDER,
    },
    ApplicationStatus.VIEWED: {
        ApplicationStatus.SHORTLISTED: Role.JOBPROVIDER,
        ApplicationStatus.REJECTED: Role.JOBPROVIDER,
    },
    ApplicationStatus.SHORTLISTED: {
        ApplicationStatus.INTERVIEW_SCHEDULED: Role.JOBPROVIDER,
        ApplicationStatus.REJECTED: Role.JOBPROVIDER,
    },
    ApplicationStatus.INTERVIEW_SCHEDULED: {
        ApplicationStatus.OFFERED: Role.JOBPROVIDER,
        ApplicationStatus.REJECTED: Role.JOBPROVIDER,
    },
    ApplicationStatus.OFFERED: {
        ApplicationStatus.HIRED: Role.JOBPROVIDER,
        ApplicationStatus.REJECTED: Role.JOBPROVIDER,
    },
    ApplicationStatus.HIRED: {},
    ApplicationStatus.REJECTED: {},
}


class TransitionTable:
    def __init__(self, policy: Policy = APPLICATION_POLICY) -> None:
        self._policy: dict[ApplicationStatus, dict[ApplicationStatus, Role]] = {
            source: dict(targets) for source, targets in policy.items()
        }

    def allowed_targets(self, source: ApplicationStatus) -> frozenset[ApplicationStatus]:
        return frozenset(self._policy.get(source, {}))

    def required_role(
        self,
        source: ApplicationStatus,
        target: ApplicationStatus,
    ) -> Role | None:
        return self._policy.get(source, {}).get(target)

    def is_terminal(self, status: ApplicationStatus) -> bool:
        return not self._policy.get(status)

    def edges(self) -> list[tuple[ApplicationStatus, ApplicationStatus, Role]]:
        order = list(ApplicationStatus)
        return sorted(
            (
                (source, target, role)
                for source, targets in self._policy.items()
                for target, role in targets.items()
            ),
            key=lambda edge: (order.index(edge[0]), order.index(edge[1])),
        )


DEFAULT_TABLE = TransitionTable()
