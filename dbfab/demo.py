"""Built-in users/orders scenario seeded from Faker name and city pools."""

from datetime import datetime
from typing import List, Optional

from faker import Faker

from dbfab.core.models import (
    ChoiceByLookupGenerator, ChoiceGenerator, ColumnSpec, ColumnType, DatetimeGenerator,
    GenerateStep, LookupTransformation, MutateTransformation, RandomFloatGenerator,
    RandomIntGenerator, RandomStringGenerator, Scenario, SequenceGenerator, SwapTransformation,
    TableSpec, TemplateTransformation, TransformationBatch, TransformStep, UuidGenerator,
)


ORDER_STATUSES = ["pending", "paid", "shipped", "delivered", "cancelled"]


def _unique_pool(factory, size: int) -> List[str]:
    values = dict.fromkeys(factory() for _ in range(size))
    return list(values)


def build_users_table(fake: Faker, pool_size: int = 500) -> TableSpec:
    return TableSpec(
        name="users",
        description="Demo customers",
        columns=(
            ColumnSpec("id", ColumnType.BIGINT, SequenceGenerator()),
            ColumnSpec("first_name", ColumnType.STRING,
                       ChoiceByLookupGenerator(_unique_pool(fake.first_name, pool_size))),
            ColumnSpec("last_name", ColumnType.STRING,
                       ChoiceByLookupGenerator(_unique_pool(fake.last_name, pool_size))),
            ColumnSpec("email", ColumnType.STRING, RandomStringGenerator(12)),
            ColumnSpec("billing_city", ColumnType.STRING,
                       ChoiceByLookupGenerator(_unique_pool(fake.city, pool_size))),
            ColumnSpec("shipping_city", ColumnType.STRING,
                       ChoiceByLookupGenerator(_unique_pool(fake.city, pool_size))),
            ColumnSpec("age", ColumnType.INTEGER, RandomIntGenerator(18, 90),
                       nullable=True, null_probability=0.05),
            ColumnSpec("signup_at", ColumnType.DATETIME,
                       DatetimeGenerator(datetime(2020, 1, 1), datetime(2024, 12, 31))),
        ),
    )


def build_orders_table(user_count: int) -> TableSpec:
    return TableSpec(
        name="orders",
        description="Demo orders referencing users by id",
        columns=(
            ColumnSpec("id", ColumnType.BIGINT, SequenceGenerator()),
            ColumnSpec("order_ref", ColumnType.STRING, UuidGenerator()),
            ColumnSpec("user_id", ColumnType.BIGINT, RandomIntGenerator(1, max(user_count, 1))),
            ColumnSpec("customer_email", ColumnType.STRING, RandomStringGenerator(8),
                       nullable=True),
            ColumnSpec("amount", ColumnType.FLOAT, RandomFloatGenerator(5.0, 500.0, 2)),
            ColumnSpec("status", ColumnType.STRING, ChoiceGenerator(ORDER_STATUSES)),
            ColumnSpec("ordered_at", ColumnType.DATETIME,
                       DatetimeGenerator(datetime(2021, 1, 1), datetime(2024, 12, 31))),
        ),
    )


def build_demo_scenario(users: int = 1000, orders: int = 5000,
                        seed: Optional[int] = None) -> Scenario:
    """Users with templated emails and typos, then orders joined back to them."""
    fake = Faker()
    if seed is not None:
        fake.seed_instance(seed)

    users_table = build_users_table(fake)
    orders_table = build_orders_table(users)

    return Scenario(
        name="demo",
        description="Faker-seeded users and orders",
        steps=(
            GenerateStep(
                table=users_table,
                row_count=users,
                batches=(
                    TransformationBatch(
                        (TemplateTransformation("email", "{first_name}.{last_name}@example.com",
                                                lowercase=True),),
                        description="derive emails",
                    ),
                    TransformationBatch(
                        (MutateTransformation("last_name", 0.02),
                         SwapTransformation("billing_city", "shipping_city", 0.1)),
                        description="introduce noise",
                    ),
                ),
            ),
            GenerateStep(table=orders_table, row_count=orders),
            TransformStep(
                table_name="orders",
                batches=(
                    TransformationBatch(
                        (LookupTransformation("customer_email", "users", "email",
                                              target_column="user_id", lookup_column="id"),),
                        description="denormalize customer emails",
                    ),
                ),
            ),
        ),
    )
