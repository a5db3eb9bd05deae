"""
Category Table - Rule-based mapping from tax categories to Schedule C lines

The reasoning model proposes a category name and a line; this table is the
source of truth that canonicalizes both. NO AI CALLS - pure reference data.

Line identifiers follow IRS Form 1040 Schedule C (e.g. "24b" for
deductible meals). Income rows map to line 1 (gross receipts).
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import structlog

logger = structlog.get_logger()


class ScheduleCCategory(str, Enum):
    """Category names the classifier may return (display form)."""
    ADVERTISING = "Advertising"
    CAR_AND_TRUCK = "Car and truck expenses"
    COMMISSIONS = "Commissions and fees"
    CONTRACT_LABOR = "Contract labor"
    DEPRECIATION = "Depreciation"
    EMPLOYEE_BENEFITS = "Employee benefit programs"
    INSURANCE = "Insurance"
    INTEREST_MORTGAGE = "Mortgage interest"
    INTEREST_OTHER = "Interest"
    LEGAL_PROFESSIONAL = "Legal and professional services"
    OFFICE_EXPENSE = "Office expense"
    PENSION = "Pension and profit-sharing plans"
    RENT_EQUIPMENT = "Rent or lease - vehicles and equipment"
    RENT_PROPERTY = "Rent or lease - other business property"
    REPAIRS = "Repairs and maintenance"
    SUPPLIES = "Supplies"
    TAXES_LICENSES = "Taxes and licenses"
    TRAVEL = "Travel"
    MEALS = "Meals"
    UTILITIES = "Utilities"
    WAGES = "Wages"
    SOFTWARE = "Software and subscriptions"
    BANK_FEES = "Bank fees"
    EDUCATION = "Education"
    PHONE_INTERNET = "Phone and internet"
    OTHER = "Other expenses"
    HOME_OFFICE = "Business use of home"
    INCOME = "Income"
    PERSONAL = "Personal"


# Schedule C expense lines (line id → form label)
SCHEDULE_C_LINES: Dict[str, str] = {
    "1": "Gross receipts or sales",
    "8": "Advertising",
    "9": "Car and truck expenses",
    "10": "Commissions and fees",
    "11": "Contract labor",
    "13": "Depreciation and section 179 expense deduction",
    "14": "Employee benefit programs",
    "15": "Insurance (other than health)",
    "16a": "Interest: Mortgage",
    "16b": "Interest: Other",
    "17": "Legal and professional services",
    "18": "Office expense",
    "19": "Pension and profit-sharing plans",
    "20a": "Rent or lease: Vehicles, machinery, and equipment",
    "20b": "Rent or lease: Other business property",
    "21": "Repairs and maintenance",
    "22": "Supplies (not included in Part III)",
    "23": "Taxes and licenses",
    "24a": "Travel",
    "24b": "Deductible meals",
    "25": "Utilities",
    "26": "Wages (less employment credits)",
    "27a": "Other expenses",
    "30": "Expenses for business use of your home",
}


@dataclass(frozen=True)
class CategoryInfo:
    """Reference row for one category"""
    name: str
    line: Optional[str]
    is_meal: bool = False
    is_travel: bool = False


class CategoryTable:
    """
    Maps category names to Schedule C lines and meal/travel flags.

    Usage:
        table = CategoryTable()
        info = table.lookup("meals")          # case-insensitive
        table.line_for("Travel")              # "24a"
        table.normalize_line("Line 24b")      # "24b"
    """

    CATEGORY_MAP: Dict[ScheduleCCategory, CategoryInfo] = {
        ScheduleCCategory.ADVERTISING: CategoryInfo("Advertising", "8"),
        ScheduleCCategory.CAR_AND_TRUCK: CategoryInfo("Car and truck expenses", "9"),
        ScheduleCCategory.COMMISSIONS: CategoryInfo("Commissions and fees", "10"),
        ScheduleCCategory.CONTRACT_LABOR: CategoryInfo("Contract labor", "11"),
        ScheduleCCategory.DEPRECIATION: CategoryInfo("Depreciation", "13"),
        ScheduleCCategory.EMPLOYEE_BENEFITS: CategoryInfo("Employee benefit programs", "14"),
        ScheduleCCategory.INSURANCE: CategoryInfo("Insurance", "15"),
        ScheduleCCategory.INTEREST_MORTGAGE: CategoryInfo("Mortgage interest", "16a"),
        ScheduleCCategory.INTEREST_OTHER: CategoryInfo("Interest", "16b"),
        ScheduleCCategory.LEGAL_PROFESSIONAL: CategoryInfo("Legal and professional services", "17"),
        ScheduleCCategory.OFFICE_EXPENSE: CategoryInfo("Office expense", "18"),
        ScheduleCCategory.PENSION: CategoryInfo("Pension and profit-sharing plans", "19"),
        ScheduleCCategory.RENT_EQUIPMENT: CategoryInfo("Rent or lease - vehicles and equipment", "20a"),
        ScheduleCCategory.RENT_PROPERTY: CategoryInfo("Rent or lease - other business property", "20b"),
        ScheduleCCategory.REPAIRS: CategoryInfo("Repairs and maintenance", "21"),
        ScheduleCCategory.SUPPLIES: CategoryInfo("Supplies", "22"),
        ScheduleCCategory.TAXES_LICENSES: CategoryInfo("Taxes and licenses", "23"),
        ScheduleCCategory.TRAVEL: CategoryInfo("Travel", "24a", is_travel=True),
        ScheduleCCategory.MEALS: CategoryInfo("Meals", "24b", is_meal=True),
        ScheduleCCategory.UTILITIES: CategoryInfo("Utilities", "25"),
        ScheduleCCategory.WAGES: CategoryInfo("Wages", "26"),
        ScheduleCCategory.SOFTWARE: CategoryInfo("Software and subscriptions", "27a"),
        ScheduleCCategory.BANK_FEES: CategoryInfo("Bank fees", "27a"),
        ScheduleCCategory.EDUCATION: CategoryInfo("Education", "27a"),
        ScheduleCCategory.PHONE_INTERNET: CategoryInfo("Phone and internet", "25"),
        ScheduleCCategory.OTHER: CategoryInfo("Other expenses", "27a"),
        ScheduleCCategory.HOME_OFFICE: CategoryInfo("Business use of home", "30"),
        ScheduleCCategory.INCOME: CategoryInfo("Income", "1"),
        ScheduleCCategory.PERSONAL: CategoryInfo("Personal", None),
    }

    # Common model phrasings → canonical category
    ALIASES: Dict[str, ScheduleCCategory] = {
        "meal": ScheduleCCategory.MEALS,
        "meals and entertainment": ScheduleCCategory.MEALS,
        "business meals": ScheduleCCategory.MEALS,
        "travel expenses": ScheduleCCategory.TRAVEL,
        "car and truck": ScheduleCCategory.CAR_AND_TRUCK,
        "vehicle expenses": ScheduleCCategory.CAR_AND_TRUCK,
        "office expenses": ScheduleCCategory.OFFICE_EXPENSE,
        "office supplies": ScheduleCCategory.OFFICE_EXPENSE,
        "legal and professional": ScheduleCCategory.LEGAL_PROFESSIONAL,
        "professional services": ScheduleCCategory.LEGAL_PROFESSIONAL,
        "software": ScheduleCCategory.SOFTWARE,
        "subscriptions": ScheduleCCategory.SOFTWARE,
        "repairs": ScheduleCCategory.REPAIRS,
        "rent": ScheduleCCategory.RENT_PROPERTY,
        "taxes": ScheduleCCategory.TAXES_LICENSES,
        "licenses": ScheduleCCategory.TAXES_LICENSES,
        "other": ScheduleCCategory.OTHER,
        "miscellaneous": ScheduleCCategory.OTHER,
        "home office": ScheduleCCategory.HOME_OFFICE,
        "revenue": ScheduleCCategory.INCOME,
        "gross receipts": ScheduleCCategory.INCOME,
    }

    _LINE_PATTERN = re.compile(r"^(?:schedule\s*c\s*)?(?:line\s*)?(\d{1,2}[ab]?)$", re.IGNORECASE)

    def __init__(self):
        self._by_name: Dict[str, CategoryInfo] = {
            info.name.casefold(): info for info in self.CATEGORY_MAP.values()
        }
        for alias, category in self.ALIASES.items():
            self._by_name.setdefault(alias, self.CATEGORY_MAP[category])

    def lookup(self, category: Optional[str]) -> Optional[CategoryInfo]:
        """Case-insensitive lookup; None for unknown categories"""
        if not category:
            return None
        return self._by_name.get(category.strip().casefold())

    def line_for(self, category: Optional[str]) -> Optional[str]:
        info = self.lookup(category)
        return info.line if info else None

    def normalize_line(self, line: Optional[str]) -> Optional[str]:
        """
        Canonicalize a line reference ("Line 24b", "24B", "schedule c line 9").

        Returns None if the value does not name a known Schedule C line.
        """
        if not line:
            return None
        match = self._LINE_PATTERN.match(line.strip())
        if not match:
            return None
        line_id = match.group(1).lower()
        return line_id if line_id in SCHEDULE_C_LINES else None

    def resolve(
        self,
        category: Optional[str],
        line: Optional[str],
    ) -> tuple:
        """
        Reconcile a (category, line) pair proposed by the classifier.

        The table's line wins for known categories; an unknown category
        keeps the model's name and falls back to the model's line, then to
        "Other expenses" (27a).

        Returns:
            (category_name, line_id, CategoryInfo or None)
        """
        info = self.lookup(category)
        if info:
            if line and self.normalize_line(line) not in (None, info.line):
                logger.debug("category_line_overridden",
                             category=info.name,
                             model_line=line,
                             table_line=info.line)
            return info.name, info.line, info

        model_line = self.normalize_line(line)
        fallback = model_line or self.CATEGORY_MAP[ScheduleCCategory.OTHER].line
        logger.info("category_not_in_table",
                    category=category,
                    model_line=line,
                    line=fallback)
        return (category.strip() if category else ScheduleCCategory.OTHER.value), fallback, None

    def label_for_line(self, line: str) -> Optional[str]:
        return SCHEDULE_C_LINES.get(line)


# Singleton instance
category_table = CategoryTable()
