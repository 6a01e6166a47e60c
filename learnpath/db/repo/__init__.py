from learnpath.db.repo.audit_repo import AuditRepo
from learnpath.db.repo.profiles_repo import ProfilesRepo
from learnpath.db.repo.rules_repo import ConcurrentUpdateError, RulesRepo

__all__ = ["RulesRepo", "ProfilesRepo", "AuditRepo", "ConcurrentUpdateError"]
