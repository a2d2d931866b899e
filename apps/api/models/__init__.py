"""Models package."""

from .user import User
from .wallet import Wallet
from .credit_transaction import CreditTransaction
from .credit_cost import CreditCost
from .plan import Plan
from .subscription import Subscription
from .payment import Payment
from .search_history import SearchHistory
from .campaign_group import CampaignGroup
from .campaign import Campaign
from .saved_lead import SavedLead
from .ai_document import AIDocument
from .seo_report import SeoReport
from .template import Template
