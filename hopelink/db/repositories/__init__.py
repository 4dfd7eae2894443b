"""Repository exports."""

from .user_repository import UserRepository
from .donation_repository import DonationRepository
from .request_repository import DonationRequestRepository
from .match_repository import MatchRepository
from .parameters_repository import MatchingParametersRepository

__all__ = [
    "UserRepository",
    "DonationRepository",
    "DonationRequestRepository",
    "MatchRepository",
    "MatchingParametersRepository",
]
