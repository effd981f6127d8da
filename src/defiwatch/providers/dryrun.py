"""Canned agent replies for dry runs.

Replies are chosen by the specialty named in the system prompt. Several are
deliberately messy (fenced, trailing commas, prose only) so a dry run walks
every stage of the normalizer.
"""

from __future__ import annotations

import asyncio

from ..models.provider import CompletionResult
from .base import BaseProvider

MOCK_REPLIES: dict[str, str] = {
    "security": """{
  "overview": "Vault contract holding user ETH deposits.",
  "securityScore": 45,
  "riskLevel": "Critical Risk",
  "keyFindings": [
    {
      "severity": "CRITICAL",
      "title": "Reentrancy in withdraw()",
      "description": "withdraw() sends ETH with call before zeroing the balance.",
      "location": "withdraw()",
      "impact": "An attacker contract can drain the vault by re-entering withdraw.",
      "recommendation": "Apply checks-effects-interactions or a ReentrancyGuard."
    },
    {
      "severity": "HIGH",
      "title": "Missing access control on setFeeRecipient",
      "description": "Anyone can redirect protocol fees.",
      "location": "setFeeRecipient(address)",
      "impact": "Fee theft.",
      "recommendation": "Restrict with onlyOwner."
    }
  ],
  "summary": "Two serious issues must be fixed before deployment."
}""",
    "comprehensive": """Here is my analysis of the contract.

```json
{
  "securityScore": 55,
  "gasScore": 70,
  "qualityScore": 80,
  "riskLevel": "High Risk",
  "keyFindings": [
    {
      "severity": "CRITICAL",
      "title": "reentrancy in withdraw",
      "description": "External call precedes the state update.",
      "location": "withdraw()",
      "recommendation": "Update balances before the external call."
    }
  ],
  "gasOptimizations": [
    {
      "title": "Cache array length in loops",
      "description": "distribute() reads holders.length every iteration.",
      "location": "distribute()",
      "recommendation": "Store the length in a local variable."
    }
  ],
  "summary": "Reentrancy is the main concern."
}
```

Let me know if you need more detail.""",
    "defi": """{
  'securityScore': 60,
  'riskLevel': 'High Risk',
  'keyFindings': [
    {
      severity: 'HIGH',
      title: 'Missing access control on setFeeRecipient',
      description: 'Fee recipient can be changed by any caller.',
      location: 'setFeeRecipient(address)',
      recommendation: 'Add onlyOwner.',
    },
    {
      severity: 'MODERATE',
      title: 'Spot price used as oracle',
      description: 'Price read from a single pool reserve ratio.',
      recommendation: 'Use a TWAP or Chainlink feed.',
    },
  ],
}""",
    "advanced-reasoning": """After tracing the state transitions, the withdraw path is
vulnerable to reentrancy because the balance is cleared after the external
call. I also see missing access control on the fee setter. The contract uses
block.timestamp for the reward window, which is acceptable for long windows.
Overall this should not be deployed as-is.""",
    "gas": """{
  "gasScore": 72,
  "gasOptimizations": [
    {
      "title": "Cache array length in loops",
      "description": "holders.length is read on every iteration.",
      "location": "distribute()",
      "recommendation": "Cache the length."
    },
    {
      "title": "Use immutable for owner",
      "description": "owner is never reassigned after construction.",
      "recommendation": "Declare owner immutable."
    }
  ]
}""",
    "quality": """{
  "qualityScore": 78,
  "codeQualityIssues": [
    {
      "severity": "INFO",
      "title": "Missing NatSpec on public functions",
      "description": "deposit and withdraw lack documentation.",
      "recommendation": "Add NatSpec comments."
    },
    {
      "severity": "LOW",
      "title": "No event emitted on withdrawal",
      "recommendation": "Emit a Withdrawal event."
    }
  ]
}""",
}

MOCK_SUPERVISOR_REPLY = """{
  "verifiedFindings": [
    {
      "severity": "CRITICAL",
      "category": "security",
      "title": "Reentrancy in withdraw()",
      "description": "withdraw() performs the ETH transfer before clearing the balance.",
      "impact": "Complete loss of deposited funds.",
      "recommendation": "Move the balance update above the call and add a ReentrancyGuard.",
      "location": "withdraw()"
    },
    {
      "severity": "HIGH",
      "category": "security",
      "title": "Missing access control on setFeeRecipient",
      "description": "Any caller can change the fee recipient.",
      "recommendation": "Restrict with onlyOwner.",
      "location": "setFeeRecipient(address)"
    },
    {
      "severity": "LOW",
      "category": "gas",
      "title": "Cache array length in loops",
      "recommendation": "Store holders.length in a local variable.",
      "location": "distribute()"
    }
  ],
  "falsePositives": [
    {"title": "Spot price used as oracle", "reason": "The contract never reads a pool price."}
  ],
  "consolidatedScore": 40,
  "gasScore": 80,
  "qualityScore": 82,
  "finalRiskLevel": "Critical Risk",
  "deploymentRecommendation": "Do not deploy until the reentrancy and access control issues are fixed."
}"""


class DryRunProvider(BaseProvider):
    """Provider that never touches the network."""

    name = "dry-run"

    def _reply_for(self, system_prompt: str, user_prompt: str) -> str:
        if "lead auditor" in user_prompt:
            return MOCK_SUPERVISOR_REPLY
        for specialty, reply in MOCK_REPLIES.items():
            if f"specializing in {specialty.replace('-', ' ')}" in system_prompt:
                return reply
        return MOCK_REPLIES["comprehensive"]

    async def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
    ) -> CompletionResult:
        await asyncio.sleep(self.config.get("latency_seconds", 0))
        content = self._reply_for(system_prompt, user_prompt)
        return CompletionResult(
            success=True,
            content=content,
            tokens_used={"input": len(user_prompt) // 4, "output": len(content) // 4},
        )
