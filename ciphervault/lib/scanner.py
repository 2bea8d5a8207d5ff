"""Heuristic privacy audit for decrypted entry text.

A rule table of regular expressions; each rule that matches costs the entry
some points and contributes one threat and one suggestion. The score runs
0..100, higher meaning safer to keep on disk.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

@dataclass(frozen=True)
class ScanReport:
	score: int
	threats: List[str] = field(default_factory=list)
	suggestions: List[str] = field(default_factory=list)

	def to_dict(self):
		return {"score": self.score, "threats": list(self.threats), "suggestions": list(self.suggestions)}

@dataclass(frozen=True)
class Rule:
	name: str
	pattern: re.Pattern
	penalty: int
	threat: str
	suggestion: str
	check: Optional[Callable[[str], bool]] = None  # extra validation of a match

def _luhn_ok(candidate: str) -> bool:
	digits = [int(c) for c in candidate if c.isdigit()]
	if not 13 <= len(digits) <= 19:
		return False
	total = 0
	for i, d in enumerate(reversed(digits)):
		if i % 2 == 1:
			d *= 2
			if d > 9: d -= 9
		total += d
	return total % 10 == 0

def _ipv4_ok(candidate: str) -> bool:
	return all(0 <= int(p) <= 255 for p in candidate.split('.'))

RULES: List[Rule] = [
	Rule('credential', re.compile(r'\b(?:password|passwd|pwd|passcode|pin|api[_ -]?key|secret)\s*[:=]\s*\S+', re.I), 35,
		'Inline credential or secret value', 'Never write passwords or keys in journal entries; use a password manager.'),
	Rule('card', re.compile(r'\b(?:\d{4}[ -]){3}\d{4}\b|\b\d{4}[ -]\d{6}[ -]\d{5}\b|\b\d{13,19}\b'), 30,
		'Payment card number', 'Remove card numbers; refer to the card by its last four digits at most.', _luhn_ok),
	Rule('national_id', re.compile(r'\b\d{3}-\d{2}-\d{4}\b'), 30,
		'National identification / social security number', 'Remove identification numbers entirely.'),
	Rule('iban', re.compile(r'\b[A-Z]{2}\d{2}(?: ?[A-Z0-9]{4}){3,7}(?: ?[A-Z0-9]{1,3})?\b'), 25,
		'Bank account number (IBAN)', 'Remove bank account details.'),
	Rule('email', re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'), 10,
		'E-mail address', 'Replace e-mail addresses with a name or initials.'),
	Rule('phone', re.compile(r'(?<![\w-])(?:\+\d{1,3}[ .-]?)?(?:\(\d{2,4}\)|\d{2,4})[ .-]\d{3,4}[ .-]\d{3,4}(?![\w-])'), 10,
		'Phone number', 'Leave phone numbers out of entries.'),
	Rule('ipv4', re.compile(r'\b(?:\d{1,3}\.){3}\d{1,3}\b'), 5,
		'IP address', 'Avoid recording network addresses.', _ipv4_ok),
	Rule('address', re.compile(r'\b\d{1,5}\s+(?:[A-Z][a-z]+\s+){1,3}(?:Street|St|Avenue|Ave|Road|Rd|Lane|Ln|Boulevard|Blvd|Drive|Dr|Court|Ct)\b\.?'), 15,
		'Street address', 'Describe places without their exact street address.'),
	Rule('birth_date', re.compile(r'\b(?:born|birthday|date of birth|dob)\b[^.\n]{0,20}?\b\d{1,4}[/.-]\d{1,2}[/.-]\d{1,4}\b', re.I), 15,
		'Date of birth', 'Avoid writing full dates of birth.'),
]

def _matches(rule: Rule, text: str) -> bool:
	for m in rule.pattern.finditer(text):
		if rule.check is None or rule.check(m.group(0)):
			return True
	return False

def scan(plaintext: str, rules: Optional[List[Rule]] = None) -> ScanReport:
	"""Audit decrypted text; pure, no I/O."""
	score = 100; threats = []; suggestions = []
	for rule in RULES if rules is None else rules:
		if _matches(rule, plaintext):
			score -= rule.penalty
			threats.append(rule.threat)
			suggestions.append(rule.suggestion)
	return ScanReport(max(0, min(100, score)), threats, suggestions)
