class RewardError(Exception):
    pass


class TransientExternalError(RewardError):
    """A partner call timed out or failed in transit. Nothing was mutated."""


class PersistentValidationError(RewardError):
    """Rule or campaign configuration that will not fix itself."""


class InventoryExhausted(RewardError):
    """Not enough inventory left for the requested amount."""


class DuplicateWinnerConflict(RewardError):
    pass


class InvalidStatusTransition(RewardError):
    pass


class RuleLocked(RewardError):
    pass
