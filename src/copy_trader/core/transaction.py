from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Instruction:
    """A top-level or inner instruction as returned by jsonParsed encoding"""
    program_id: str
    accounts: Tuple[str, ...] = ()
    data: str = ""
    parsed: Optional[Dict[str, Any]] = None
    parent_index: Optional[int] = None  # top-level index an inner instruction belongs to

    @property
    def parsed_type(self) -> Optional[str]:
        if isinstance(self.parsed, dict):
            return self.parsed.get("type")
        return None

    @property
    def parsed_info(self) -> Dict[str, Any]:
        if isinstance(self.parsed, dict):
            return self.parsed.get("info") or {}
        return {}

    @classmethod
    def from_json(cls, data: Dict[str, Any], parent_index: Optional[int] = None) -> "Instruction":
        return cls(
            program_id=data.get("programId", ""),
            accounts=tuple(data.get("accounts") or ()),
            data=data.get("data", "") or "",
            parsed=data.get("parsed") if isinstance(data.get("parsed"), dict) else None,
            parent_index=parent_index,
        )


@dataclass(frozen=True)
class TokenBalance:
    account_index: int
    account: str
    mint: str
    owner: Optional[str]
    amount: int
    decimals: Optional[int]
    ui_amount: Decimal

    @classmethod
    def from_json(cls, data: Dict[str, Any], account_keys: List[str]) -> "TokenBalance":
        ui = data.get("uiTokenAmount") or {}
        index = int(data.get("accountIndex", -1))
        decimals = ui.get("decimals")
        raw_amount = ui.get("amount")
        ui_string = ui.get("uiAmountString")
        if ui_string is None and ui.get("uiAmount") is not None:
            ui_string = str(ui["uiAmount"])
        try:
            ui_amount = Decimal(ui_string) if ui_string is not None else Decimal(0)
        except InvalidOperation:
            ui_amount = Decimal(0)
        if raw_amount is None and decimals is not None:
            amount = int(ui_amount.scaleb(int(decimals)))
        else:
            amount = int(raw_amount or 0)
        return cls(
            account_index=index,
            account=account_keys[index] if 0 <= index < len(account_keys) else "",
            mint=data.get("mint", ""),
            owner=data.get("owner"),
            amount=amount,
            decimals=int(decimals) if decimals is not None else None,
            ui_amount=ui_amount,
        )


@dataclass
class ParsedTransaction:
    signature: str
    account_keys: List[str] = field(default_factory=list)
    instructions: List[Instruction] = field(default_factory=list)
    inner_instructions: List[Instruction] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    pre_token_balances: List[TokenBalance] = field(default_factory=list)
    post_token_balances: List[TokenBalance] = field(default_factory=list)
    pre_balances: List[int] = field(default_factory=list)
    post_balances: List[int] = field(default_factory=list)
    fee: int = 0
    block_time: Optional[int] = None
    err: Any = None

    @property
    def fee_payer(self) -> Optional[str]:
        return self.account_keys[0] if self.account_keys else None

    def account_index(self, address: str) -> Optional[int]:
        try:
            return self.account_keys.index(address)
        except ValueError:
            return None

    def lamport_delta(self, address: str) -> int:
        """Net lamport change of an account, with the network fee added back for the fee payer"""
        index = self.account_index(address)
        if index is None or index >= len(self.pre_balances) or index >= len(self.post_balances):
            return 0
        delta = self.post_balances[index] - self.pre_balances[index]
        if index == 0:
            delta += self.fee
        return delta

    def token_accounts(self) -> Dict[str, TokenBalance]:
        """Token account address -> balance record (post state preferred)"""
        accounts = {b.account: b for b in self.pre_token_balances if b.account}
        accounts.update({b.account: b for b in self.post_token_balances if b.account})
        return accounts

    def mint_decimals(self) -> Dict[str, int]:
        decimals = {}
        for balance in self.pre_token_balances + self.post_token_balances:
            if balance.decimals is not None:
                decimals[balance.mint] = balance.decimals
        return decimals

    @classmethod
    def from_rpc(cls, signature: str, result: Dict[str, Any]) -> "ParsedTransaction":
        """Build from a `getTransaction` result in jsonParsed encoding"""
        meta = result.get("meta") or {}
        message = (result.get("transaction") or {}).get("message") or {}

        account_keys = []
        for key in message.get("accountKeys", []):
            account_keys.append(key.get("pubkey", "") if isinstance(key, dict) else str(key))
        # Address lookup table entries follow the static keys
        loaded = meta.get("loadedAddresses") or {}
        if not any(isinstance(k, dict) and k.get("source") == "lookupTable" for k in message.get("accountKeys", [])):
            account_keys.extend(loaded.get("writable", []))
            account_keys.extend(loaded.get("readonly", []))

        instructions = [Instruction.from_json(ix) for ix in message.get("instructions", [])]

        inner_instructions = []
        for group in meta.get("innerInstructions") or []:
            parent = group.get("index")
            for ix in group.get("instructions", []):
                inner_instructions.append(Instruction.from_json(ix, parent_index=parent))

        return cls(
            signature=signature,
            account_keys=account_keys,
            instructions=instructions,
            inner_instructions=inner_instructions,
            logs=list(meta.get("logMessages") or []),
            pre_token_balances=[TokenBalance.from_json(b, account_keys) for b in meta.get("preTokenBalances") or []],
            post_token_balances=[TokenBalance.from_json(b, account_keys) for b in meta.get("postTokenBalances") or []],
            pre_balances=list(meta.get("preBalances") or []),
            post_balances=list(meta.get("postBalances") or []),
            fee=int(meta.get("fee") or 0),
            block_time=result.get("blockTime"),
            err=meta.get("err"),
        )
