"""Models package."""

from .profile import Profile
from .campaign import Campaign
from .visit import Visit
from .credit_transaction import CreditTransaction
from .fraud_review import FraudReview
