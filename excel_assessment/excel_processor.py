"""Workbook inspection and template authoring for the practical tasks."""
import os
from io import BytesIO
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.formula import ArrayFormula
from openpyxl.worksheet.worksheet import Worksheet
from pydantic import BaseModel, Field
import structlog

logger = structlog.get_logger()


class ExcelProcessingError(Exception):
    """Raised when an uploaded workbook cannot be read."""


class UnknownTemplateError(ValueError):
    """Raised for a template type with no generator."""


class EvaluationDetails(BaseModel):
    formulas_found: List[str] = []
    expected_formulas: List[str] = []
    sheet_structure: Dict[str, Any] = {}
    named_ranges: List[str] = []
    issues: List[str] = []
    recommendations: List[str] = []


class ExcelEvaluationResult(BaseModel):
    formula_accuracy: float = 0.0
    structure_score: float = 0.0
    best_practices_score: float = 0.0
    details: EvaluationDetails = Field(default_factory=EvaluationDetails)


class FormulaCheck(BaseModel):
    """Passes when every keyword of at least one group appears in the workbook's formulas."""

    label: str
    any_of: Tuple[Tuple[str, ...], ...]
    points: int
    issue: str
    recommendation: str


FORMULA_BASE_SCORE = 60
STRUCTURE_BASE_SCORE = 60
DATA_ROWS_BONUS = 20
MISSING_SHEETS_PENALTY = 20

TASK_CHECKS: Dict[str, List[FormulaCheck]] = {
    "sales_analysis": [
        FormulaCheck(
            label="XLOOKUP or INDEX/MATCH",
            any_of=(("XLOOKUP",), ("INDEX", "MATCH")),
            points=15,
            issue="Missing advanced lookup formulas (XLOOKUP or INDEX/MATCH)",
            recommendation="Use XLOOKUP or INDEX/MATCH to pull values instead of copying them by hand",
        ),
        FormulaCheck(
            label="SUMIFS",
            any_of=(("SUMIFS",),),
            points=15,
            issue="Missing SUMIFS for conditional aggregation",
            recommendation="Aggregate revenue by month and region with SUMIFS",
        ),
    ],
}


def clamp_score(value: float) -> float:
    return float(max(0, min(100, value)))


class ExcelProcessor:

    def evaluate_excel_file(
        self,
        file_path: str,
        expected_sheets: Sequence[str],
        task_type: str,
    ) -> ExcelEvaluationResult:
        """Score an uploaded workbook on formulas, structure and best practices."""
        try:
            workbook = load_workbook(file_path)
        except Exception as e:
            logger.error("Failed to open workbook", file_path=file_path, error=str(e))
            raise ExcelProcessingError(f"Failed to evaluate Excel file: {e}") from e

        evaluation = ExcelEvaluationResult()
        details = evaluation.details
        sheet_names = list(workbook.sheetnames)
        details.sheet_structure = {"sheet_count": len(sheet_names), "sheet_names": sheet_names}
        details.named_ranges = [str(name) for name in workbook.defined_names]

        formula_accuracy = 0.0
        structure_score = 0.0

        if not all(sheet in sheet_names for sheet in expected_sheets):
            details.issues.append("Missing required sheets")
            details.recommendations.append(
                f"Create the expected sheets: {', '.join(expected_sheets)}"
            )
            structure_score -= MISSING_SHEETS_PENALTY

        has_data_rows = False
        for worksheet in workbook.worksheets:
            details.formulas_found.extend(self.extract_formulas(worksheet))
            if self.count_data_rows(worksheet) > 0:
                has_data_rows = True

        checks = TASK_CHECKS.get(task_type)
        if checks:
            formula_accuracy += FORMULA_BASE_SCORE
            structure_score += STRUCTURE_BASE_SCORE
            if has_data_rows:
                structure_score += DATA_ROWS_BONUS

            upper_formulas = [f.upper() for f in details.formulas_found]
            for check in checks:
                details.expected_formulas.append(check.label)
                if self._check_passes(check, upper_formulas):
                    formula_accuracy += check.points
                else:
                    details.issues.append(check.issue)
                    details.recommendations.append(check.recommendation)

        evaluation.formula_accuracy = clamp_score(formula_accuracy)
        evaluation.structure_score = clamp_score(structure_score)
        evaluation.best_practices_score = clamp_score(self.evaluate_best_practices(workbook))

        logger.info(
            "Workbook evaluated",
            task_type=task_type,
            formulas=len(details.formulas_found),
            formula_accuracy=evaluation.formula_accuracy,
            structure_score=evaluation.structure_score,
            best_practices_score=evaluation.best_practices_score,
        )
        return evaluation

    @staticmethod
    def _check_passes(check: FormulaCheck, upper_formulas: List[str]) -> bool:
        return any(
            all(any(keyword in f for f in upper_formulas) for keyword in group)
            for group in check.any_of
        )

    @staticmethod
    def extract_formulas(worksheet: Worksheet) -> List[str]:
        """Return every formula on the sheet, without the leading '='."""
        formulas = []
        for row in worksheet.iter_rows():
            for cell in row:
                value = cell.value
                if isinstance(value, ArrayFormula):
                    text = value.text or ""
                elif cell.data_type == "f" and isinstance(value, str):
                    text = value
                else:
                    continue
                formulas.append(text[1:] if text.startswith("=") else text)
        return formulas

    @staticmethod
    def count_data_rows(worksheet: Worksheet) -> int:
        """Count non-empty rows below the header row."""
        return sum(
            1
            for row in worksheet.iter_rows(min_row=2, values_only=True)
            if any(value is not None and value != "" for value in row)
        )

    def evaluate_best_practices(self, workbook: Workbook) -> float:
        score = 50

        sheet_names = workbook.sheetnames
        if all(len(name) > 2 and "Sheet" not in name for name in sheet_names):
            score += 20

        # Multiple sheets indicate organization
        if len(sheet_names) > 1:
            score += 15

        has_complex_formulas = any(
            len(formula) > 20 or "IF(" in formula
            for worksheet in workbook.worksheets
            for formula in self.extract_formulas(worksheet)
        )
        if has_complex_formulas:
            score += 15

        return min(100, score)

    # Templates

    def generate_sales_analysis_template(self) -> bytes:
        raw_data = [
            ["Date", "Region", "Product", "Sales Rep", "Revenue", "Units Sold"],
            ["2024-01-15", "North", "Widget A", "John Smith", 1500, 10],
            ["2024-01-15", "South", "Widget B", "Jane Doe", 2200, 15],
            ["2024-01-20", "North", "Widget C", "Bob Johnson", 1800, 12],
            ["2024-01-25", "East", "Widget A", "Alice Brown", 1200, 8],
            ["2024-02-05", "West", "Widget B", "Charlie Wilson", 2800, 20],
            ["2024-02-10", "North", "Widget A", "John Smith", 1600, 11],
            ["2024-02-15", "South", "Widget C", "Jane Doe", 2100, 14],
            ["2024-02-20", "East", "Widget B", "Alice Brown", 1900, 13],
            ["2024-03-01", "West", "Widget A", "Charlie Wilson", 1700, 12],
            ["2024-03-05", "North", "Widget C", "Bob Johnson", 2300, 16],
            ["2024-03-10", "South", "Widget A", "Jane Doe", 1400, 9],
            ["2024-03-15", "East", "Widget B", "Alice Brown", 2000, 14],
            ["2024-03-20", "West", "Widget C", "Charlie Wilson", 2500, 18],
            ["2024-03-25", "North", "Widget B", "John Smith", 1800, 12],
        ]
        instructions = [
            ["Excel Skills Assessment - Sales Analysis Task"],
            [""],
            ["Instructions:"],
            ["1. Create a monthly revenue summary by region"],
            ["2. Identify top 3 products per region using dynamic formulas"],
            ["3. Build KPI dashboard with month-over-month growth indicators"],
            ["4. Flag months with >10% revenue drops"],
            [""],
            ["Requirements:"],
            ["- Use XLOOKUP or INDEX/MATCH for lookups"],
            ["- Use SUMIFS for conditional aggregation"],
            ["- Create separate sheets for your analysis"],
            ["- Include charts if time permits"],
            [""],
            ["Time Limit: 10 minutes"],
            [""],
            ["When complete, save as yourname_solution.xlsx and upload"],
        ]
        expected_structure = [
            ["Expected Output Structure:"],
            [""],
            ["Sheet 1: Monthly_Summary"],
            ["Month", "Region", "Total Revenue", "Total Units", "YoY Growth%"],
            [""],
            ["Sheet 2: Top_Products"],
            ["Region", "Rank", "Product", "Total Revenue"],
            [""],
            ["Sheet 3: KPI_Dashboard"],
            ["Month", "Total Revenue", "MoM Growth%", "Alert Flag"],
        ]
        return self._build_workbook([
            ("Raw_Data", raw_data),
            ("Instructions", instructions),
            ("Expected_Structure", expected_structure),
        ])

    def generate_data_cleanup_template(self) -> bytes:
        messy_data = [
            ["Customer Name", "Email", "Phone", "Order Date", "Product", "Quantity", "Price"],
            ["John Smith", "john@email.com", "555-1234", "1/15/2024", "Widget A", "5", "$25.99"],
            ["JANE DOE", "JANE@EMAIL.COM", "(555) 987-6543", "01/20/2024", "widget b", "3", "45.50"],
            ["Bob Johnson", "bob@company.com", "555.867.5309", "2024-01-25", "Widget C", "seven", "$35.00"],
            ["Alice Brown", "alice.brown@domain.org", "555 444 3333", "2/1/24", "Widget A", "2", "25.99"],
            ["", "charlie@test.com", "5554567890", "2/5/2024", "Widget B", "4", "45.5"],
            ["David Wilson", "david@email", "555-123-4567", "02/10/2024", "Widget C", "1", "$35"],
            ["Emma Davis", "emma@company.com", "555-987-6543", "2/15/2024", "widget a", "8", "25.99"],
        ]
        instructions = [
            ["Data Cleanup Task"],
            [""],
            ["Clean the messy data in the following ways:"],
            ["1. Standardize customer names (proper case)"],
            ["2. Validate and clean email addresses"],
            ["3. Standardize phone number format"],
            ["4. Convert all dates to consistent format"],
            ["5. Standardize product names"],
            ["6. Convert quantity text to numbers"],
            ["7. Clean price formatting"],
            ["8. Handle missing/invalid data"],
            [""],
            ['Create a "Clean_Data" sheet with the results'],
            ["Use Excel functions like PROPER, CLEAN, SUBSTITUTE, etc."],
        ]
        return self._build_workbook([
            ("Messy_Data", messy_data),
            ("Instructions", instructions),
        ])

    @staticmethod
    def _build_workbook(sheets: Iterable[Tuple[str, List[List[Any]]]]) -> bytes:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets:
            worksheet = workbook.create_sheet(title=title)
            for row in rows:
                worksheet.append(row)
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    def generate_template(self, template_type: str) -> bytes:
        generators = {
            "sales_analysis": self.generate_sales_analysis_template,
            "data_cleanup": self.generate_data_cleanup_template,
        }
        generator = generators.get(template_type)
        if generator is None:
            raise UnknownTemplateError(f"Unknown template type: {template_type}")
        return generator()

    def save_template(self, template_type: str, file_path: str) -> None:
        content = self.generate_template(template_type)
        directory = os.path.dirname(file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(file_path, "wb") as f:
            f.write(content)
        logger.info("Template saved", template_type=template_type, file_path=file_path)


# Global processor instance
excel_processor = ExcelProcessor()
