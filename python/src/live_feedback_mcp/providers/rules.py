"""
Pattern constants for the rule-based providers.

Contains:
- Line-level risk patterns for the instant pattern scanner
- Deprecated construct patterns for the syntax checker
- Solidity vocabulary for the completion suggester
"""

from typing import Dict, List, Tuple

# (rule_id, regex, message, severity, category, fix)
RISK_PATTERNS: List[Tuple[str, str, str, str, str, str]] = [
    (
        "tx-origin",
        r"\btx\.origin\b",
        "tx.origin usage detected; avoid it for authorization",
        "WARNING",
        "security",
        "Use msg.sender instead",
    ),
    (
        "delegatecall",
        r"\.delegatecall\s*\(",
        "delegatecall executes foreign code in this contract's storage context",
        "WARNING",
        "security",
        "Restrict delegatecall targets to trusted, immutable addresses",
    ),
    (
        "selfdestruct",
        r"\bselfdestruct\s*\(",
        "selfdestruct permanently removes the contract",
        "WARNING",
        "security",
        "Guard selfdestruct with strict access control or remove it",
    ),
    (
        "block-timestamp",
        r"\bblock\.timestamp\b",
        "block.timestamp can be influenced by block producers",
        "INFO",
        "security",
        "Avoid using block.timestamp for randomness or tight deadlines",
    ),
    (
        "low-level-send",
        r"\.send\s*\(",
        "send() forwards only 2300 gas and fails silently",
        "WARNING",
        "security",
        "Prefer call{value: ...}() with a checked return value",
    ),
]

LOW_LEVEL_CALL = r"\.(call|send|delegatecall)\s*(\{[^}]*\})?\s*\("
CHECKED_CALL_PREFIX = r"(\(\s*bool\b|\brequire\s*\(|\bif\s*\(|\bassert\s*\(|=\s*[^=]*$|\breturn\b)"
STATE_WRITE = r"\b\w+\s*\[[^\]]+\]\s*(\+|-|\*|/)?=(?!=)"
ARRAY_LENGTH_LOOP = r"\bfor\s*\([^)]*\.length"

DEPRECATED_CONSTRUCTS: List[Tuple[str, str, str]] = [
    ("deprecated-throw", r"\bthrow\b", 'Use of deprecated "throw" statement; use revert() instead'),
    ("deprecated-suicide", r"\bsuicide\s*\(", 'Use of deprecated "suicide"; use selfdestruct() instead'),
    ("deprecated-sha3", r"\bsha3\s*\(", 'Use of deprecated "sha3"; use keccak256() instead'),
    ("deprecated-var", r"\bvar\s+\w+\s*=", 'Use of deprecated "var"; declare an explicit type'),
]

PRAGMA_VERSION = r"^\s*[\^~]?\s*(>=|<=|>|<|=)?\s*\d+\.\d+(\.\d+)?(\s+(>=|<=|>|<|=)?\s*\d+\.\d+(\.\d+)?)*\s*$"

VISIBILITY_KEYWORDS = ("public", "private", "internal", "external")

SOLIDITY_KEYWORDS: List[str] = [
    "pragma", "solidity", "contract", "interface", "library", "import", "using",
    "function", "modifier", "event", "struct", "enum", "mapping",
    "public", "private", "internal", "external", "pure", "view", "payable",
    "constant", "immutable", "override", "virtual", "abstract",
    "if", "else", "for", "while", "do", "break", "continue", "return", "returns",
    "try", "catch", "require", "assert", "revert", "emit",
    "new", "delete", "this", "super", "memory", "storage", "calldata",
]

SOLIDITY_TYPES: List[str] = [
    "bool", "uint", "int", "address", "bytes", "string",
    "uint8", "uint16", "uint32", "uint64", "uint128", "uint256",
    "int8", "int16", "int32", "int64", "int128", "int256",
    "bytes1", "bytes4", "bytes8", "bytes16", "bytes32",
]

MEMBER_COMPLETIONS: Dict[str, List[Tuple[str, str]]] = {
    "msg": [
        ("sender", "address: sender of the current call"),
        ("value", "uint256: wei sent with the call"),
        ("data", "bytes: complete calldata"),
        ("sig", "bytes4: function selector"),
    ],
    "block": [
        ("timestamp", "uint256: current block timestamp"),
        ("number", "uint256: current block number"),
        ("chainid", "uint256: current chain id"),
        ("coinbase", "address payable: block producer"),
        ("gaslimit", "uint256: block gas limit"),
        ("basefee", "uint256: block base fee"),
    ],
    "tx": [
        ("origin", "address: original sender (avoid for auth)"),
        ("gasprice", "uint256: gas price of the transaction"),
    ],
    "abi": [
        ("encode", "abi.encode(...) returns (bytes memory)"),
        ("encodePacked", "abi.encodePacked(...) returns (bytes memory)"),
        ("encodeWithSelector", "abi.encodeWithSelector(bytes4, ...)"),
        ("encodeWithSignature", "abi.encodeWithSignature(string, ...)"),
        ("decode", "abi.decode(bytes memory, (...))"),
    ],
}

ADDRESS_MEMBERS: List[Tuple[str, str]] = [
    ("balance", "uint256: balance in wei"),
    ("code", "bytes: deployed code"),
    ("transfer", "transfer(uint256): send wei, revert on failure"),
    ("send", "send(uint256) returns (bool)"),
    ("call", "call(bytes) returns (bool, bytes)"),
    ("delegatecall", "delegatecall(bytes) returns (bool, bytes)"),
    ("staticcall", "staticcall(bytes) returns (bool, bytes)"),
]

DECLARATION_SNIPPETS: Dict[str, List[Tuple[str, str]]] = {
    "function": [
        ("name() external view returns () {}", "external view function"),
        ("name() public {}", "public function"),
        ("name() internal pure returns () {}", "internal pure function"),
    ],
    "modifier": [
        ("onlyOwner() { require(msg.sender == owner); _; }", "owner-only modifier"),
    ],
    "event": [
        ("Name(address indexed from, uint256 value);", "event declaration"),
    ],
}

PRAGMA_SNIPPETS: List[Tuple[str, str]] = [
    ("solidity ^0.8.20;", "Solidity 0.8.20 or newer (0.8.x)"),
    ("solidity ^0.8.0;", "Solidity 0.8.x"),
    ("abicoder v2;", "ABI coder v2"),
]

IMPORT_SNIPPETS: List[Tuple[str, str]] = [
    ('"@openzeppelin/contracts/access/Ownable.sol";', "OpenZeppelin Ownable"),
    ('"@openzeppelin/contracts/utils/ReentrancyGuard.sol";', "OpenZeppelin ReentrancyGuard"),
    ('"@openzeppelin/contracts/token/ERC20/ERC20.sol";', "OpenZeppelin ERC20"),
]
