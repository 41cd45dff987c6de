import io
import re
from typing import Dict, List, Optional

import pandas as pd
from pypdf import PdfReader

GRADE_LINE = re.compile(r"^\d{1,2}(st|nd|rd|th)$", re.I)
DATE_LINE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})")
STUDENT_NAME = re.compile(r"^([A-Z][a-zA-Z\s'-]+),\s*([A-Z][a-zA-Z\s'-]*)$")
NOT_A_NAME = re.compile(
    r"Violation|Description|Resolution|Student Total|Grand Total|MS\s*:|Level\s*\d|salah|class|behavior|warned|talking",
    re.I,
)
PDF_SOURCE = "Discipline Event Summary PDF"


def normalise_header(value: str) -> str:
    value = value.strip().lstrip("\ufeff").lower()
    return re.sub(r"[^a-z0-9]+", "_", value)


def parse_csv(content: bytes) -> List[Dict[str, str]]:
    df = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False, encoding="utf-8-sig",
                     skipinitialspace=False)
    df.columns = [normalise_header(str(c)) for c in df.columns]
    df = df.apply(lambda col: col.str.strip())
    df = df[(df != "").any(axis=1)]
    return df.to_dict(orient="records")


# ---------------- discipline PDF ----------------
def is_grade_line(line: str) -> bool:
    return bool(GRADE_LINE.match(line))


def is_date_line(line: str) -> bool:
    return bool(DATE_LINE.match(line))


def is_student_line(line: str) -> bool:
    # "LastName, FirstName", nothing that looks like event text
    if "," not in line or is_date_line(line):
        return False
    if NOT_A_NAME.search(line):
        return False
    return bool(STUDENT_NAME.match(line))


def us_to_iso_date(value: str) -> str:
    m = DATE_LINE.match(value)
    if not m:
        return value
    month, day, year = m.groups()
    return f"{year}-{month}-{day}"


def parse_violation_header(header_line: str) -> Dict:
    m = re.search(r"(-?\d+)\s*$", header_line)
    points_raw = int(m.group(1)) if m else None
    header = header_line[:m.start()].strip() if m else header_line.strip()

    category = ""
    subcategory = header
    if re.search(r"Support Violation", header, re.I):
        category = "Support Violation"
        subcategory = re.sub(r"Support Violation", "", header, count=1, flags=re.I).strip()
    elif re.search(r"Violation", header, re.I):
        category = "Violation"
        subcategory = re.sub(r"Violation", "", header, count=1, flags=re.I).strip()

    subcategory = re.sub(r"^MS\s*:\s*", "", subcategory, flags=re.I)
    subcategory = re.sub(r"^Level\s*\d+\s*:\s*", "", subcategory, flags=re.I).strip()

    is_merit = bool(re.search(r"Buy Back", header, re.I)) or (points_raw is not None and points_raw < 0)
    return {
        "category": category,
        "subcategory": subcategory,
        "points": abs(points_raw) if points_raw is not None else None,
        "event_type": "merit" if is_merit else "demerit",
    }


def _split_staff_and_header(remainder: str):
    if re.match(r"^,?\s*Student\s*Support", remainder, re.I) or re.match(r"^\s*,\s*Student$", remainder, re.I):
        m = re.search(r"Support\s*(Violation.*)", remainder, re.I)
        return "Student Support", (m.group(1) if m else "")
    m = re.search(r"\bViolation\b", remainder, re.I)
    if m:
        staff = remainder[:m.start()].strip().rstrip(",")
        return re.sub(r"^,\s*", "", staff), remainder[m.start():].strip()
    if remainder and not re.search(r"student", remainder, re.I):
        return re.sub(r"^,\s*", "", remainder), ""
    return "", ""


def parse_discipline_lines(raw_lines: List[str]) -> List[Dict[str, str]]:
    lines = [ln.strip() for ln in raw_lines]
    lines = [ln for ln in lines
             if ln and not ln.startswith("--") and not re.search(r"Author\s*Details\s*Points", ln, re.I)]

    rows = []
    grade: Optional[int] = None
    student: Optional[str] = None
    i = 0
    while i < len(lines):
        line = lines[i]
        if is_grade_line(line):
            grade = int(re.match(r"\d+", line).group(0))
            i += 1
            continue
        if is_student_line(line):
            student = line
            i += 1
            continue
        if is_date_line(line) and student:
            raw_date = DATE_LINE.match(line).group(0)
            remainder = line.replace(raw_date, "", 1).strip().lstrip(",").strip()
            staff_name, header_line = _split_staff_and_header(remainder)

            if not header_line and i + 1 < len(lines) and re.search(r"Violation", lines[i + 1], re.I):
                header_line = lines[i + 1]
                i += 1

            header = parse_violation_header(header_line)
            description, resolution, section = [], [], None
            i += 1
            while i < len(lines):
                nxt = lines[i]
                if is_date_line(nxt) or is_student_line(nxt) or is_grade_line(nxt):
                    i -= 1
                    break
                if re.match(r"^Description", nxt, re.I):
                    section = "description"
                    description.append(re.sub(r"^Description", "", nxt, flags=re.I).strip())
                elif re.match(r"^Resolution", nxt, re.I):
                    section = "resolution"
                    resolution.append(re.sub(r"^Resolution", "", nxt, flags=re.I).strip())
                elif re.match(r"^(Student|Grand) Total", nxt, re.I):
                    break
                elif section == "description":
                    description.append(nxt)
                elif section == "resolution":
                    resolution.append(nxt)
                i += 1

            notes = " | ".join(p for p in (" ".join(description).strip(), " ".join(resolution).strip()) if p)
            rows.append({
                "student_name": student,
                "grade": str(grade) if grade else "",
                "section": "",
                "event_type": header["event_type"],
                "event_date": us_to_iso_date(raw_date),
                "staff_name": staff_name,
                "category": header["category"],
                "subcategory": header["subcategory"],
                "points": str(header["points"]) if header["points"] is not None else "0",
                "notes": notes,
                "source_system": PDF_SOURCE,
            })
        i += 1
    return rows


def parse_discipline_pdf(content: bytes) -> List[Dict[str, str]]:
    reader = PdfReader(io.BytesIO(content))
    text = "\n".join(page.extract_text() or "" for page in reader.pages)
    return parse_discipline_lines(text.split("\n"))


# ---------------- row validation ----------------
def parse_event_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date().isoformat()


def parse_int_safe(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    m = re.match(r"^\s*(-?\d+)", str(value))
    return int(m.group(1)) if m else None


def normalise_event_type(value: Optional[str]) -> Optional[str]:
    lowered = (value or "").strip().lower()
    return lowered if lowered in ("merit", "demerit") else None


def last_first_to_first_last(name: str) -> str:
    if "," not in name:
        return name
    last, first = name.split(",", 1)
    return f"{first.strip()} {last.strip()}"
