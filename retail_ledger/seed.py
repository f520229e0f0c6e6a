"""Demo data for the retail ledger

Loads two users (sarah and john, password ``Password123``), their accounts,
five recent transactions on Sarah's current account, Sarah's two saved
beneficiaries, and enrolls Sarah for biometric login with the device
credential ``DEMO_DEVICE_CREDENTIAL``.

Account balances are the demo's displayed balances; opening balances are
derived so that opening + transactions reproduces them exactly.

Run with: python -m retail_ledger.seed
"""

from decimal import Decimal
from datetime import datetime, timedelta, timezone
from typing import Optional

from .currency import Money
from .accounts import AccountType
from .transactions import Category
from .logging_config import get_logger, setup_logging

logger = get_logger("retail_ledger.seed")

DEMO_PASSWORD = "Password123"
DEMO_DEVICE_CREDENTIAL = "demo-device-sarah"

DEMO_USERS = [
    {
        "key": "sarah",
        "first_name": "Sarah",
        "last_name": "Johnson",
        "email": "sarah@example.com",
        "username": "sarah",
        "phone_number": "071 234 5678",
        "id_number": "8901235678901",
    },
    {
        "key": "john",
        "first_name": "John",
        "last_name": "Smith",
        "email": "john@example.com",
        "username": "john",
        "phone_number": "082 345 6789",
        "id_number": "9001235678901",
    },
]

DEMO_ACCOUNTS = [
    ("sarah_current", "sarah", "Global One Account", AccountType.CURRENT, "1234567890", "24560.75"),
    ("sarah_savings", "sarah", "Savings Account", AccountType.SAVINGS, "0987654321", "15200.30"),
    ("john_current", "john", "Global One Account", AccountType.CURRENT, "5678901234", "18750.45"),
]

# (account key, age, description, signed amount, category)
DEMO_TRANSACTIONS = [
    ("sarah_current", timedelta(days=5), "Transfer to John", "-500.00", Category.TRANSFER),
    ("sarah_current", timedelta(days=4), "Uber Ride", "-87.50", Category.TRANSPORT),
    ("sarah_current", timedelta(days=3), "Netflix Subscription", "-159.00", Category.ENTERTAINMENT),
    ("sarah_current", timedelta(days=2), "Salary Deposit", "18500.00", Category.INCOME),
    ("sarah_current", timedelta(hours=2), "Woolworths", "-245.80", Category.SHOPPING),
]

DEMO_BENEFICIARIES = [
    ("sarah", "John Smith", "5678901234", "FNB", "250655", "John"),
    ("sarah", "Sarah Johnson", "0987654321", "Nedbank", "198765", "Sarah"),
]


def seed_demo_data(system, now: Optional[datetime] = None) -> bool:
    """
    Load the demo data set into an empty ledger

    Args:
        system: LedgerSystem to populate
        now: Reference time for transaction ages (defaults to current UTC time)

    Returns:
        True if data was loaded, False if users already existed
    """
    if system.users.count_users() > 0:
        logger.info("Users already present; skipping demo seed")
        return False

    now = now or datetime.now(timezone.utc)
    currency = system.accounts.currency

    with system.storage.atomic():
        users = {}
        for entry in DEMO_USERS:
            fields = {k: v for k, v in entry.items() if k != "key"}
            users[entry["key"]] = system.users.create_user(password=DEMO_PASSWORD, **fields)

        accounts = {}
        for key, owner, name, account_type, number, displayed in DEMO_ACCOUNTS:
            posted = sum(
                (Decimal(amount) for acct, _, _, amount, _ in DEMO_TRANSACTIONS if acct == key),
                Decimal('0')
            )
            accounts[key] = system.accounts.create_account(
                user_id=users[owner].id,
                name=name,
                account_type=account_type,
                opening_balance=Money(Decimal(displayed) - posted, currency),
                account_number=number
            )

        for key, age, description, amount, category in DEMO_TRANSACTIONS:
            account = accounts[key]
            system.ledger.post(
                account_id=account.id,
                amount=Money(Decimal(amount), currency),
                category=category,
                description=description,
                timestamp=now - age,
                user_id=account.user_id
            )

        for owner, name, number, bank, branch, reference in DEMO_BENEFICIARIES:
            system.beneficiaries.add_beneficiary(
                user_id=users[owner].id,
                name=name,
                account_number=number,
                bank_name=bank,
                branch_code=branch,
                reference=reference
            )

        system.auth.enroll_biometric(users["sarah"].id, DEMO_DEVICE_CREDENTIAL)

    logger.info(
        f"Seeded {len(DEMO_USERS)} users, {len(DEMO_ACCOUNTS)} accounts, "
        f"{len(DEMO_TRANSACTIONS)} transactions and {len(DEMO_BENEFICIARIES)} beneficiaries"
    )
    return True


if __name__ == "__main__":
    from .config import get_config
    from .api.auth import LedgerSystem

    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    ledger_system = LedgerSystem(config)
    try:
        if seed_demo_data(ledger_system):
            print(f"Demo data loaded into {config.database_url}")
        else:
            print("Database already has users; nothing to do")
    finally:
        ledger_system.close()
