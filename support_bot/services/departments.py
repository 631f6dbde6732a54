from support_bot.errors import UnknownDepartment
from support_bot.logging_config import get_logger
from support_bot.schemas.ticket import Department

logger = get_logger(__name__)

DEFAULT_DEPARTMENTS = [
    Department(name="TI - Tecnologia da Informação", email="ti@kx3.com.br"),
    Department(name="RH - Recursos Humanos", email="rh@kx3.com.br"),
    Department(name="Financeiro", email="financeiro@kx3.com.br"),
    Department(name="Comercial", email="comercial@kx3.com.br"),
    Department(name="Suporte Técnico", email="suporte@kx3.com.br"),
]


def _normalize(name: str) -> str:
    return " ".join(name.split()).casefold()


class SheetDepartmentSource:
    """Reads `name | email` rows from a spreadsheet range (header row optional)."""

    def __init__(self, sheets_service, spreadsheet_id: str, range_name: str):
        self.sheets_service = sheets_service
        self.spreadsheet_id = spreadsheet_id
        self.range_name = range_name

    def load(self) -> list[Department]:
        response = (
            self.sheets_service.spreadsheets()
            .values()
            .get(spreadsheetId=self.spreadsheet_id, range=self.range_name)
            .execute()
        )
        departments = []
        for row in response.get("values", []):
            if len(row) < 2 or "@" not in row[1]:
                continue
            departments.append(Department(name=row[0].strip(), email=row[1].strip()))
        return departments


class DepartmentDirectory:
    def __init__(self, source=None, fallback: list[Department] | None = None):
        self.source = source
        self.fallback = list(fallback or DEFAULT_DEPARTMENTS)

    def list(self) -> list[Department]:
        if self.source is None:
            return list(self.fallback)
        try:
            departments = self.source.load()
        except Exception as e:
            logger.error(f"Could not read departments from sheet, using static list: {e}")
            return list(self.fallback)
        if not departments:
            logger.warning("Department sheet is empty, using static list")
            return list(self.fallback)
        return departments

    def find(self, name: str) -> Department | None:
        wanted = _normalize(name)
        for department in self.list():
            if _normalize(department.name) == wanted:
                return department
        return None

    def resolve(self, name: str) -> Department:
        department = self.find(name)
        if department is None:
            raise UnknownDepartment(name, [d.name for d in self.list()])
        return department
