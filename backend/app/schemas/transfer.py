from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TransferIn(BaseModel):
    """Body of ``POST /transfers``. Required fields are enforced by the gateway."""

    model_config = ConfigDict(populate_by_name=True)

    from_user_id: str | None = Field(default=None, alias="fromUserId")
    to_user_id: str | None = Field(default=None, alias="toUserId")
    from_address: str | None = Field(default=None, alias="fromAddress")
    to_address: str | None = Field(default=None, alias="toAddress")
    amount: str | int | float | None = None
    token_contract: str | None = Field(default=None, alias="tokenContract")
    token_symbol: str | None = Field(default=None, alias="tokenSymbol")
    chain_id: int | None = Field(default=None, alias="chainId")
    message: str | None = None
    provider_token: str | None = Field(default=None, alias="providerToken")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class CompleteTransferIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_address: str | None = Field(default=None, alias="fromAddress")
    provider_token: str | None = Field(default=None, alias="providerToken")


class SyncOut(BaseModel):
    message: str
    processed: int
    updated: int
    unchanged: int
    errors: int
