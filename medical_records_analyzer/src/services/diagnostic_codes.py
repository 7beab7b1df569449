import re
from typing import Dict, Optional

import pandas as pd
from loguru import logger

CODE_COL = "Diagnostic Code"
CONDITION_COL = "Condition"
CFR_COL = "CFR Reference"
CATEGORY_COL = "Category"

_DC_NUMBER_RE = re.compile(r"(?<!\d)(\d{4})(?!\d)")


class DiagnosticCodeLookup:
    """38 CFR Part 4 diagnostic codes loaded from CSV.

    Rows may hold a single code ("9411") or an inclusive range ("5235-5243").
    Specific codes should come before the ranges that contain them; the first
    matching row wins.
    """

    def __init__(self, csv_path: str):
        self.csv_path = csv_path
        self.df = self._load_csv()

    def _load_csv(self) -> pd.DataFrame:
        logger.info(f"Loading diagnostic code CSV: {self.csv_path}")
        df = pd.read_csv(self.csv_path, dtype=str).fillna("")
        missing = {CODE_COL, CONDITION_COL, CFR_COL, CATEGORY_COL} - set(df.columns)
        if missing:
            raise ValueError(f"Diagnostic code CSV is missing columns: {sorted(missing)}")

        bounds = df[CODE_COL].str.strip().str.split("-", n=1, expand=True)
        if bounds.shape[1] == 1:
            bounds[1] = None
        df["code_start"] = pd.to_numeric(bounds[0], errors="coerce")
        df["code_end"] = pd.to_numeric(bounds[1].fillna(bounds[0]), errors="coerce")
        return df

    def lookup(self, code: str) -> Optional[Dict[str, str]]:
        """Resolve a code string such as "DC 9411" or "9411-9440" to its row."""
        match = _DC_NUMBER_RE.search(code or "")
        if not match:
            return None
        number = int(match.group(1))

        rows = self.df[(self.df["code_start"] <= number) & (self.df["code_end"] >= number)]
        if rows.empty:
            logger.debug(f"No diagnostic code row for: {code}")
            return None

        row = rows.iloc[0]
        return {
            "code": row[CODE_COL].strip(),
            "condition": row[CONDITION_COL].strip(),
            "cfr_reference": row[CFR_COL].strip(),
            "category": row[CATEGORY_COL].strip(),
        }

    def reference_table(self) -> str:
        """Render the table grouped by category for the extraction prompt."""
        lines = []
        for category, group in self.df.groupby(CATEGORY_COL, sort=False):
            cfr = group[CFR_COL].iloc[0]
            lines.append(f"{category} ({cfr}):")
            for _, row in group.iterrows():
                lines.append(f"- DC {row[CODE_COL]}: {row[CONDITION_COL]} [{row[CFR_COL]}]")
            lines.append("")
        return "\n".join(lines).strip()
