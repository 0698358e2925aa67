"""Budget vs. actual aggregation."""

import unittest
import uuid
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from profit_iq.core.errors import NotFoundError, ValidationError
from profit_iq.models.project import Base, BudgetCategoryEstimate, LineItem, ProjectDocument
from profit_iq.schemas.document import ConfirmDocumentRequest
from profit_iq.schemas.project import BudgetCategory, ProjectCreate
from profit_iq.services.budget_service import (
    compute_totals,
    get_project_budget_summary,
    get_project_totals,
    list_project_summaries,
    update_budget_estimate,
)
from profit_iq.services.confirmation_service import confirm_document
from profit_iq.services.project_service import create_project

OWNER_ID = str(uuid.uuid4())


class BudgetAggregationTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.db = sessionmaker(bind=self.engine)()

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _project(self, contract_value=None, owner_id=OWNER_ID, name="Garage"):
        return create_project(
            self.db,
            owner_id=owner_id,
            payload=ProjectCreate(name=name, contract_value=contract_value),
        )

    def _document(self, project, status, *items):
        doc = ProjectDocument(
            project_id=project.id,
            owner_id=project.owner_id,
            file_name="doc.pdf",
            file_path="https://storage.test/doc.pdf",
            status=status,
        )
        self.db.add(doc)
        self.db.flush()
        for index, (description, total, category) in enumerate(items):
            self.db.add(
                LineItem(
                    document_id=doc.id,
                    project_id=project.id,
                    description=description,
                    total=Decimal(str(total)),
                    category=category,
                    sort_order=index,
                )
            )
        self.db.commit()
        return doc

    def _row(self, project, category):
        return next(i for i in get_project_budget_summary(self.db, project.id) if i.category == category)

    def test_new_project_has_five_zero_rows(self):
        project = self._project()
        summary = get_project_budget_summary(self.db, project.id)
        self.assertEqual([i.category for i in summary], [c.value for c in BudgetCategory])
        for item in summary:
            self.assertEqual((item.estimated_amount, item.actual_amount, item.variance), (0.0, 0.0, 0.0))

    def test_five_rows_even_without_estimate_rows(self):
        project = self._project()
        self.db.query(BudgetCategoryEstimate).delete()
        self.db.commit()
        self.assertEqual(len(get_project_budget_summary(self.db, project.id)), 5)

    def test_only_confirmed_documents_count(self):
        project = self._project()
        self._document(project, "confirmed", ("Lumber", 100, "Materials"))
        self._document(project, "extracted", ("Lumber", 100, "Materials"))
        for status in ("pending", "processing", "rejected", "failed"):
            self._document(project, status, ("Lumber", 100, "Materials"))

        self.assertEqual(self._row(project, "Materials").actual_amount, 100.0)

    def test_variance_is_estimated_minus_actual(self):
        under = self._project(name="Under")
        update_budget_estimate(self.db, under.id, BudgetCategory.LABOR, 1000)
        self._document(under, "confirmed", ("Crew", 800, "Labor"))
        self.assertEqual(self._row(under, "Labor").variance, 200.0)

        over = self._project(name="Over")
        update_budget_estimate(self.db, over.id, BudgetCategory.LABOR, 1000)
        self._document(over, "confirmed", ("Crew", 1200, "Labor"))
        self.assertEqual(self._row(over, "Labor").variance, -200.0)

    def test_projects_do_not_leak(self):
        first = self._project(name="First")
        second = self._project(name="Second")
        self._document(second, "confirmed", ("Pump", 400, "Equipment"))
        self.assertEqual(self._row(first, "Equipment").actual_amount, 0.0)
        self.assertEqual(self._row(second, "Equipment").actual_amount, 400.0)

    def test_uncategorized_items_do_not_appear_in_categories(self):
        project = self._project()
        self._document(project, "confirmed", ("Misc", 50, None), ("Bolts", 25, "Other"))
        self.assertEqual(self._row(project, "Other").actual_amount, 25.0)

    def test_cents_are_summed_exactly(self):
        project = self._project()
        self._document(project, "confirmed", ("A", "0.10", "Other"), ("B", "0.20", "Other"))
        self.assertEqual(self._row(project, "Other").actual_amount, 0.3)

    def test_totals_margin(self):
        project = self._project(contract_value=50000)
        update_budget_estimate(self.db, project.id, BudgetCategory.MATERIALS, 10000)
        update_budget_estimate(self.db, project.id, BudgetCategory.LABOR, 20000)
        self._document(project, "confirmed", ("Concrete", 12500, "Materials"))

        totals = get_project_totals(self.db, project.id)
        self.assertEqual(totals.contract_value, 50000.0)
        self.assertEqual(totals.total_estimated, 30000.0)
        self.assertEqual(totals.total_actual, 12500.0)
        self.assertEqual(totals.margin_amount, 37500.0)
        self.assertEqual(totals.margin_percent, 75.0)

    def test_margin_percent_zero_without_contract_value(self):
        project = self._project(contract_value=None)
        self._document(project, "confirmed", ("Concrete", 300, "Materials"))
        totals = get_project_totals(self.db, project.id)
        self.assertEqual(totals.contract_value, 0.0)
        self.assertEqual(totals.margin_amount, -300.0)
        self.assertEqual(totals.margin_percent, 0.0)

    def test_margin_percent_zero_for_zero_contract(self):
        totals = compute_totals(Decimal("0"), [("Labor", Decimal("0"), Decimal("10"))])
        self.assertEqual(totals.margin_percent, 0.0)

    def test_totals_for_missing_project(self):
        with self.assertRaises(NotFoundError):
            get_project_totals(self.db, uuid.uuid4())

    def test_update_estimate_upserts(self):
        project = self._project()
        update_budget_estimate(self.db, project.id, "Materials", 100)
        update_budget_estimate(self.db, project.id, "Materials", 250.5)
        rows = (
            self.db.query(BudgetCategoryEstimate)
            .filter(BudgetCategoryEstimate.project_id == project.id, BudgetCategoryEstimate.category == "Materials")
            .all()
        )
        self.assertEqual(len(rows), 1)
        self.assertEqual(float(rows[0].estimated_amount), 250.5)

    def test_update_estimate_creates_missing_row(self):
        project = self._project()
        self.db.query(BudgetCategoryEstimate).delete()
        self.db.commit()
        update_budget_estimate(self.db, project.id, BudgetCategory.OTHER, 75)
        self.assertEqual(self._row(project, "Other").estimated_amount, 75.0)

    def test_negative_estimate_rejected(self):
        project = self._project()
        with self.assertRaises(ValidationError):
            update_budget_estimate(self.db, project.id, BudgetCategory.OTHER, -1)

    def test_list_project_summaries_is_owner_scoped(self):
        mine = self._project(contract_value=1000, name="Mine")
        self._project(contract_value=1000, owner_id=str(uuid.uuid4()), name="Theirs")
        self._document(mine, "confirmed", ("Tile", 100, "Materials"))

        summaries = list_project_summaries(self.db, OWNER_ID)
        self.assertEqual([p.name for p, _ in summaries], ["Mine"])
        self.assertEqual(summaries[0][1].margin_percent, 90.0)

    def test_end_to_end_confirmation_scenario(self):
        project = self._project(contract_value=100000)
        update_budget_estimate(self.db, project.id, BudgetCategory.MATERIALS, 20000)
        doc = self._document(project, "extracted")
        confirm_document(
            self.db,
            doc,
            ConfirmDocumentRequest(line_items=[{"description": "Lumber", "total": 15000, "category": "Materials"}]),
        )

        materials = self._row(project, "Materials")
        self.assertEqual(
            (materials.estimated_amount, materials.actual_amount, materials.variance),
            (20000.0, 15000.0, 5000.0),
        )
        totals = get_project_totals(self.db, project.id)
        self.assertEqual(totals.total_actual, 15000.0)
        self.assertEqual(totals.margin_amount, 85000.0)
        self.assertEqual(totals.margin_percent, 85.0)
