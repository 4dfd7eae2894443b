"""Database models for the HopeLink matching service."""

from .user import User
from .donation import Donation
from .request import DonationRequest
from .match import Match
from .matching_parameters import MatchingParameterRecord

__all__ = ["User", "Donation", "DonationRequest", "Match", "MatchingParameterRecord"]
