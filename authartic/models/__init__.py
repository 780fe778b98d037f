# authartic/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from authartic.models.attachment import Attachment  # noqa: F401
from authartic.models.user import User, UserProfile, VendorInfo  # noqa: F401

from authartic.models.subscription import (  # noqa: F401
    SubscriptionPlan,
    SubscriptionPlanFeature,
    SubscriptionStatus,
)

from authartic.models.certificate import Certificate, CertificateInfo, CertificateOwner  # noqa: F401
