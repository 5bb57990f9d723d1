"""
Pydantic schemas for API requests and responses
"""

from datetime import date
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field, field_validator

from ..currency import Money, Currency
from ..interest import estimate_interest, amount_due
from ..invites import Invite
from ..loans import Loan
from ..queries import status_label, status_color
from ..users import BankAccount, User


def _check_currency(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    return Currency.from_code(value).code


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (NGN, GHS)")
    
    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


class BankAccountModel(BaseModel):
    account_number: str
    account_name: str
    bank_name: str
    
    def to_bank_account(self) -> BankAccount:
        return BankAccount(
            account_number=self.account_number,
            account_name=self.account_name,
            bank_name=self.bank_name
        )


# Auth schemas
class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    role: Literal["LOANER", "LOANEE"]
    phone: str = ""
    currency: Optional[str] = None
    bank_account: Optional[BankAccountModel] = None
    
    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        return _check_currency(value)


class LoginRequest(BaseModel):
    email: str
    password: str


# User schemas
class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    currency: Optional[str] = None
    bank_account: Optional[BankAccountModel] = None
    
    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        return _check_currency(value)


class AcceptingLoansRequest(BaseModel):
    accepting: bool


# Invite schemas
class SendInviteRequest(BaseModel):
    email: str


# Loan schemas
class CreateLoanRequest(BaseModel):
    loaner_id: str
    amount: str = Field(..., description="Decimal amount as string")
    due_date: date
    currency: Optional[str] = None
    notes: Optional[str] = None
    
    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        return _check_currency(value)


class ApproveLoanRequest(BaseModel):
    proof_of_disbursement: Optional[str] = Field(None, description="Opaque proof image (e.g. base64)")
    interest_rate: str = Field("0", description="Annual interest rate in percent")


class RepaymentRequest(BaseModel):
    proof_of_repayment: Optional[str] = None


class DefaultOverdueRequest(BaseModel):
    as_of: Optional[date] = Field(None, description="Sweep date; dates after today are treated as today")


# Response builders
def user_response(user: User) -> Dict[str, Any]:
    return user.to_public_dict()


def invite_response(invite: Invite) -> Dict[str, Any]:
    return invite.to_dict()


def loan_response(loan: Loan) -> Dict[str, Any]:
    data = loan.to_dict()
    interest = estimate_interest(loan.amount.amount, loan.interest_rate, loan.request_date)
    data.update({
        "status_label": status_label(loan.status),
        "status_color": status_color(loan.status),
        "estimated_interest": MoneyModel.from_money(
            Money(interest, loan.currency)
        ).model_dump(),
        "amount_due": MoneyModel.from_money(amount_due(loan)).model_dump(),
    })
    return data
