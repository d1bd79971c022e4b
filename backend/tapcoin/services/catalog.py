"""Declarative upgrade catalogs and the daily reward table."""

from __future__ import annotations

from typing import Literal, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

UPGRADE_KIND_PASSIVE = "passive"
UPGRADE_KIND_CLICK = "click"
UPGRADE_KINDS = (UPGRADE_KIND_PASSIVE, UPGRADE_KIND_CLICK)

RewardKind = Literal["coins", "bomb", "shield"]


class RewardSpec(BaseModel):
    """Награда: монеты, бомбы или щиты."""

    model_config = ConfigDict(frozen=True)

    kind: RewardKind = "coins"
    amount: float = Field(ge=0)
    message: str = ""


class PassiveUpgradeDef(BaseModel):
    """Апгрейд пассивного дохода."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str = ""
    icon: str = ""
    base_price: float = Field(gt=0)
    price_multiplier: float = Field(gt=1)
    base_income: float = Field(ge=0)


class ClickUpgradeDef(BaseModel):
    """Апгрейд силы клика."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str = ""
    icon: str = ""
    base_price: float = Field(gt=0)
    price_multiplier: float = Field(gt=1)
    click_boost: int = Field(ge=0)


DEFAULT_PASSIVE_UPGRADES = [
    PassiveUpgradeDef(id=1, name="Кириешки", description="ХАхахахаххпхп", icon="🍟",
                      base_price=100, base_income=0.01, price_multiplier=1.2),
    PassiveUpgradeDef(id=2, name="Кириешки 2", description="Тоже самое что первое только покруче", icon="⛏️",
                      base_price=1_000, base_income=0.1, price_multiplier=1.2),
    PassiveUpgradeDef(id=3, name="Кириешки 3", description="С холодцом и хреном", icon="🏭",
                      base_price=10_000, base_income=1, price_multiplier=1.2),
    PassiveUpgradeDef(id=4, name="Чивапчичи", description="Хз просто слово смешное", icon="🏦",
                      base_price=100_000, base_income=5, price_multiplier=1.2),
    PassiveUpgradeDef(id=5, name="Чивапчичи 2", description="Ну типо ты крут если купил", icon="🚗",
                      base_price=1_000_000, base_income=25, price_multiplier=1.2),
    PassiveUpgradeDef(id=6, name="Чивапчичи 3", description="Будто фильм Чивапчичи: 3", icon="🧑🏻",
                      base_price=10_000_000, base_income=100, price_multiplier=1.2),
    PassiveUpgradeDef(id=7, name="Артёмчик и Костик", description="Да да мы", icon="👦🏻",
                      base_price=100_000_000, base_income=500, price_multiplier=1.2),
    PassiveUpgradeDef(id=8, name="Филип Моррис!", description="Самый высокий статус", icon="🚬",
                      base_price=1_000_000_000, base_income=2500, price_multiplier=1.2),
]

DEFAULT_CLICK_UPGRADES = [
    ClickUpgradeDef(id=1, name="Лох", description="Не придумал описание", icon="👆",
                    base_price=200, click_boost=1, price_multiplier=1.7),
    ClickUpgradeDef(id=2, name="Нормис", description="Ну ты уже чего то достиг", icon="💪",
                    base_price=2_000, click_boost=2, price_multiplier=1.7),
    ClickUpgradeDef(id=3, name="Среднячок", description="Давай побольше, ок?", icon="👊",
                    base_price=20_000, click_boost=5, price_multiplier=1.7),
    ClickUpgradeDef(id=4, name="Норм чел", description="Не дать не взять", icon="⚡",
                    base_price=200_000, click_boost=10, price_multiplier=1.7),
    ClickUpgradeDef(id=5, name="Крутой", description="Мы начинаем тебя уважать", icon="✨",
                    base_price=2_000_000, click_boost=25, price_multiplier=1.7),
    ClickUpgradeDef(id=6, name="Мега крутой", description="Реально респект", icon="🌟",
                    base_price=20_000_000, click_boost=50, price_multiplier=1.7),
]

DEFAULT_DAILY_REWARDS = [
    RewardSpec(kind="shield", amount=1, message="Бонус Щит"),
    RewardSpec(kind="bomb", amount=1, message="Бонус Бомба"),
    RewardSpec(kind="coins", amount=500_000, message="500,000 Монет"),
    RewardSpec(kind="shield", amount=1, message="1 Щит"),
    RewardSpec(kind="bomb", amount=3, message="3 Бомбы"),
    RewardSpec(kind="coins", amount=5_000_000, message="5,000,000 Монет"),
    RewardSpec(kind="bomb", amount=5, message="5 Бомб"),
]


UpgradeDef = Union[PassiveUpgradeDef, ClickUpgradeDef]


def get_upgrade(catalog: Sequence[UpgradeDef], upgrade_id: int) -> UpgradeDef | None:
    """Найти апгрейд по ID."""
    return next((upgrade for upgrade in catalog if upgrade.id == upgrade_id), None)


def catalog_for(config, kind: str) -> Sequence[UpgradeDef]:
    if kind == UPGRADE_KIND_PASSIVE:
        return config.passive_upgrades
    if kind == UPGRADE_KIND_CLICK:
        return config.click_upgrades
    raise ValueError(f"Unknown upgrade kind: {kind}")
