from datetime import date, datetime
from enum import Enum
from typing import Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base

# largest value an SQLite INTEGER column holds
MAX_AMOUNT_CENTS = 2**63 - 1


class ExpenseCategory(str, Enum):
    food_dining = "FOOD_DINING"
    groceries = "GROCERIES"
    restaurants = "RESTAURANTS"
    coffee_tea = "COFFEE_TEA"
    fast_food = "FAST_FOOD"
    delivery = "DELIVERY"

    transportation = "TRANSPORTATION"
    fuel = "FUEL"
    public_transport = "PUBLIC_TRANSPORT"
    taxi_rideshare = "TAXI_RIDESHARE"
    parking = "PARKING"
    vehicle_maintenance = "VEHICLE_MAINTENANCE"

    shopping = "SHOPPING"
    clothing = "CLOTHING"
    electronics = "ELECTRONICS"
    books = "BOOKS"
    home_goods = "HOME_GOODS"
    personal_care = "PERSONAL_CARE"

    entertainment = "ENTERTAINMENT"
    movies_tv = "MOVIES_TV"
    gaming = "GAMING"
    sports = "SPORTS"
    hobbies = "HOBBIES"
    events = "EVENTS"

    healthcare = "HEALTHCARE"
    medicine = "MEDICINE"
    doctor_visits = "DOCTOR_VISITS"
    dental = "DENTAL"
    vision = "VISION"
    fitness = "FITNESS"

    housing = "HOUSING"
    rent = "RENT"
    mortgage = "MORTGAGE"
    utilities = "UTILITIES"
    internet = "INTERNET"
    maintenance = "MAINTENANCE"

    education = "EDUCATION"
    tuition = "TUITION"
    books_supplies = "BOOKS_SUPPLIES"
    courses = "COURSES"
    workshops = "WORKSHOPS"

    business = "BUSINESS"
    office_supplies = "OFFICE_SUPPLIES"
    software = "SOFTWARE"
    marketing = "MARKETING"
    professional = "PROFESSIONAL"

    travel = "TRAVEL"
    accommodation = "ACCOMMODATION"
    flights = "FLIGHTS"
    car_rental = "CAR_RENTAL"
    activities = "ACTIVITIES"

    personal = "PERSONAL"
    gifts = "GIFTS"
    donations = "DONATIONS"
    insurance = "INSURANCE"
    subscriptions = "SUBSCRIPTIONS"
    other = "OTHER"

    @property
    def display_name(self) -> str:
        return CATEGORY_DISPLAY_NAMES[self]

    @classmethod
    def resolve(cls, text: str) -> "ExpenseCategory":
        """Match an identifier or display name, ignoring case and one typo."""
        needle = text.strip().lower()
        if not needle:
            raise ValueError("Category is required")
        for category in cls:
            if needle in (category.value.lower(), category.display_name.lower()):
                return category

        candidates = [
            category
            for category in cls
            if Levenshtein.distance(needle, category.display_name.lower()) <= 1
            or Levenshtein.distance(needle, category.value.lower()) <= 1
        ]
        if len(candidates) == 1:
            return candidates[0]
        if candidates:
            names = ", ".join(c.display_name for c in candidates)
            raise ValueError(f"Category '{text}' is ambiguous: {names}")
        raise ValueError(f"Unknown category '{text}'")


CATEGORY_DISPLAY_NAMES: dict[ExpenseCategory, str] = {
    ExpenseCategory.food_dining: "Food & Dining",
    ExpenseCategory.groceries: "Groceries",
    ExpenseCategory.restaurants: "Restaurants",
    ExpenseCategory.coffee_tea: "Coffee & Tea",
    ExpenseCategory.fast_food: "Fast Food",
    ExpenseCategory.delivery: "Food Delivery",
    ExpenseCategory.transportation: "Transportation",
    ExpenseCategory.fuel: "Fuel & Gas",
    ExpenseCategory.public_transport: "Public Transport",
    ExpenseCategory.taxi_rideshare: "Taxi & Rideshare",
    ExpenseCategory.parking: "Parking",
    ExpenseCategory.vehicle_maintenance: "Vehicle Maintenance",
    ExpenseCategory.shopping: "Shopping",
    ExpenseCategory.clothing: "Clothing & Apparel",
    ExpenseCategory.electronics: "Electronics",
    ExpenseCategory.books: "Books & Media",
    ExpenseCategory.home_goods: "Home & Garden",
    ExpenseCategory.personal_care: "Personal Care",
    ExpenseCategory.entertainment: "Entertainment",
    ExpenseCategory.movies_tv: "Movies & TV",
    ExpenseCategory.gaming: "Gaming",
    ExpenseCategory.sports: "Sports & Fitness",
    ExpenseCategory.hobbies: "Hobbies",
    ExpenseCategory.events: "Events & Shows",
    ExpenseCategory.healthcare: "Healthcare",
    ExpenseCategory.medicine: "Medicine & Pharmacy",
    ExpenseCategory.doctor_visits: "Doctor Visits",
    ExpenseCategory.dental: "Dental Care",
    ExpenseCategory.vision: "Vision Care",
    ExpenseCategory.fitness: "Fitness & Gym",
    ExpenseCategory.housing: "Housing",
    ExpenseCategory.rent: "Rent",
    ExpenseCategory.mortgage: "Mortgage",
    ExpenseCategory.utilities: "Utilities",
    ExpenseCategory.internet: "Internet & Phone",
    ExpenseCategory.maintenance: "Home Maintenance",
    ExpenseCategory.education: "Education",
    ExpenseCategory.tuition: "Tuition & Fees",
    ExpenseCategory.books_supplies: "Books & Supplies",
    ExpenseCategory.courses: "Online Courses",
    ExpenseCategory.workshops: "Workshops & Training",
    ExpenseCategory.business: "Business",
    ExpenseCategory.office_supplies: "Office Supplies",
    ExpenseCategory.software: "Software & Tools",
    ExpenseCategory.marketing: "Marketing & Advertising",
    ExpenseCategory.professional: "Professional Services",
    ExpenseCategory.travel: "Travel",
    ExpenseCategory.accommodation: "Accommodation",
    ExpenseCategory.flights: "Flights",
    ExpenseCategory.car_rental: "Car Rental",
    ExpenseCategory.activities: "Travel Activities",
    ExpenseCategory.personal: "Personal",
    ExpenseCategory.gifts: "Gifts",
    ExpenseCategory.donations: "Donations & Charity",
    ExpenseCategory.insurance: "Insurance",
    ExpenseCategory.subscriptions: "Subscriptions",
    ExpenseCategory.other: "Other",
}


EXPENSE_CATEGORY_ENUM = SAEnum(
    ExpenseCategory,
    name="expensecategory",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    validate_strings=True,
)


class Expense(Base):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(
        EXPENSE_CATEGORY_ENUM, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    receipt_image_path: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_on: Mapped[date] = mapped_column(Date, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_expenses_created_on", "created_on"),
        Index("ix_expenses_category_created_on", "category", "created_on"),
        CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return (
            f"Expense(id={self.id!r}, title={self.title!r}, "
            f"amount_cents={self.amount_cents!r}, category={self.category.value}, "
            f"created_at={self.created_at.isoformat()})"
        )
