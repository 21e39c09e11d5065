from .users import get_user_by_email, create_user
from .organizations import (
    create_org_with_owner,
    get_org_by_id,
    get_org_by_slug,
    resolve_org,
    update_org,
)
from .memberships import create_membership, get_membership, list_memberships
from .settings import get_setting, update_setting
