"""New customer registration"""

import logging
import random
from datetime import datetime
from typing import Callable, Optional

from nova_bank.config import settings
from nova_bank.domain.exceptions import DomainException
from nova_bank.domain.models import CardNetwork, User
from nova_bank.domain.products import generate_account_number, issue_card
from nova_bank.infrastructure.database.repositories import Ledger, LedgerStore, user_from_record
from nova_bank.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

AVATAR_URL_TEMPLATE = "https://picsum.photos/seed/{username}/100"


class UsernameTakenError(DomainException):
    """Registration asked for a username that already exists"""

    code = "username_taken"
    default_message = "Username is already taken."


def register_user(
    store: LedgerStore,
    name: str,
    username: str,
    email: str,
    phone: str,
    rng: Optional[random.Random] = None,
    clock: Callable[[], datetime] = utcnow,
) -> User:
    """
    Create a customer with the starting cash balance and one Visa card.

    Usernames are stored lowercased and must be unique. Raises
    UsernameTakenError otherwise; the store's unique constraint backs the
    pre-check if two registrations race.
    """
    rng = rng or random.Random()
    username = username.strip().lower()
    now = clock()

    def _create(ledger: Ledger) -> User:
        if ledger.users.username_taken(username):
            raise UsernameTakenError()

        account_number = generate_account_number(rng)
        while ledger.users.find_by_field("savings_account_number", account_number):
            account_number = generate_account_number(rng)

        record = ledger.users.create(
            name=name.strip(),
            username=username,
            email=email.strip(),
            phone=phone.strip(),
            balance_cents=settings.starting_balance_cents,
            savings_account_number=account_number,
            avatar_url=AVATAR_URL_TEMPLATE.format(username=username),
        )
        ledger.cards.add(record.uid, issue_card(CardNetwork.VISA, rng, now), now)
        ledger.session.refresh(record)
        return user_from_record(record)

    user = store.run_transaction(_create)
    logger.info("User registered", extra={"user_id": user.uid, "step": "registration"})
    return user
