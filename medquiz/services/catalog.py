import logging
from typing import Dict, List, NamedTuple, Optional, Tuple

from database.models import QuizSelection
from medquiz.errors import ValidationError

logger = logging.getLogger(__name__)

# Reference data: categories -> subjects -> blocks (with pool sizes).
# Subjects with blocks are only selectable block by block.
CATEGORIES = [
    {
        "id": "basic-medical-sciences",
        "name": "Basic Medical Sciences",
        "subjects": [
            {"id": "anatomy", "name": "Anatomy", "blocks": [
                {"id": "upper-limb", "name": "Upper Limb", "question_count": 50},
                {"id": "lower-limb", "name": "Lower Limb", "question_count": 45},
                {"id": "thorax", "name": "Thorax", "question_count": 40},
                {"id": "abdomen", "name": "Abdomen", "question_count": 42},
                {"id": "tapp", "name": "Pelvic & Perineum (TAPP)", "question_count": 35},
                {"id": "head-neck", "name": "Head & Neck", "question_count": 48},
                {"id": "neuroanatomy", "name": "Neuroanatomy", "question_count": 55},
            ]},
            {"id": "histology", "name": "Histology", "question_count": 60},
            {"id": "embryology", "name": "Embryology", "question_count": 45},
            {"id": "mb-anatomy", "name": "MB Anatomy", "question_count": 315, "is_master_block": True},
            {"id": "physiology", "name": "Physiology", "blocks": [
                {"id": "block-1", "name": "Block 1", "question_count": 40},
                {"id": "block-2", "name": "Block 2", "question_count": 42},
                {"id": "block-3", "name": "Block 3", "question_count": 38},
                {"id": "block-4", "name": "Block 4", "question_count": 41},
                {"id": "block-5", "name": "Block 5", "question_count": 39},
                {"id": "block-6", "name": "Block 6", "question_count": 44},
            ]},
            {"id": "mb-physiology", "name": "MB Physiology", "question_count": 244, "is_master_block": True},
            {"id": "biochemistry", "name": "Biochemistry", "blocks": [
                {"id": "block-1", "name": "Block 1", "question_count": 35},
                {"id": "block-2", "name": "Block 2", "question_count": 37},
                {"id": "block-3", "name": "Block 3", "question_count": 33},
            ]},
            {"id": "mb-biochemistry", "name": "MB Biochemistry", "question_count": 105, "is_master_block": True},
        ],
    },
    {
        "id": "path-pharm",
        "name": "Path & Pharm",
        "subjects": [
            {"id": "microbiology", "name": "Microbiology", "blocks": [
                {"id": "block-1", "name": "Block 1: Bacteriology & Mycology", "question_count": 45},
                {"id": "block-2", "name": "Block 2: Mycology & Virology", "question_count": 42},
                {"id": "block-3", "name": "Block 3: Parasitology", "question_count": 38},
            ]},
            {"id": "pathology", "name": "Pathology", "blocks": [
                {"id": "block-1", "name": "Block 1", "question_count": 40},
                {"id": "block-2", "name": "Block 2", "question_count": 41},
            ]},
            {"id": "chemical-pathology", "name": "Chemical Pathology", "blocks": [
                {"id": "block-1", "name": "Block 1", "question_count": 35},
                {"id": "block-2", "name": "Block 2", "question_count": 37},
            ]},
            {"id": "hematology", "name": "Hematology", "blocks": [
                {"id": "block-1", "name": "Block 1", "question_count": 32},
                {"id": "block-2", "name": "Block 2", "question_count": 34},
            ]},
            {"id": "pharmacology", "name": "Pharmacology", "blocks": [
                {"id": "block-1", "name": "Block 1", "question_count": 38},
                {"id": "block-2", "name": "Block 2", "question_count": 40},
            ]},
            {"id": "mb-path-pharm", "name": "MB Path & Pharm", "question_count": 482, "is_master_block": True},
        ],
    },
]

MIXED_CATEGORY = "mixed"


class BlockRef(NamedTuple):
    category_id: str
    subject_id: str
    block_id: Optional[str]


class Catalog:
    def __init__(self, categories: List[Dict] = None):
        self.categories = categories if categories is not None else CATEGORIES
        # subject_id -> (category, subject)
        self.subject_map: Dict[str, Tuple[Dict, Dict]] = {}
        for category in self.categories:
            for subject in category["subjects"]:
                if subject["id"] in self.subject_map:
                    logger.warning(f"Duplicate subject id in catalog: {subject['id']}")
                self.subject_map[subject["id"]] = (category, subject)

    @staticmethod
    def subject_total(subject: Dict) -> int:
        blocks = subject.get("blocks")
        if blocks:
            return sum(b["question_count"] for b in blocks)
        return subject.get("question_count", 0)

    def as_tree(self) -> List[Dict]:
        """
        Catalog for the selection screen, with per-subject totals filled in.
        """
        tree = []
        for category in self.categories:
            subjects = []
            for subject in category["subjects"]:
                entry = {
                    "id": subject["id"],
                    "name": subject["name"],
                    "question_count": self.subject_total(subject),
                    "is_master_block": subject.get("is_master_block", False),
                }
                if subject.get("blocks"):
                    entry["blocks"] = [dict(b) for b in subject["blocks"]]
                subjects.append(entry)
            tree.append({"id": category["id"], "name": category["name"], "subjects": subjects})
        return tree

    def get_category(self, category_id: str) -> Optional[Dict]:
        return next((c for c in self.categories if c["id"] == category_id), None)

    def find_block(self, subject_id: str, block_id: Optional[str]) -> Optional[BlockRef]:
        found = self.subject_map.get(subject_id)
        if not found:
            return None
        category, subject = found
        blocks = subject.get("blocks") or []
        if block_id:
            if not any(b["id"] == block_id for b in blocks):
                return None
        elif blocks:
            # Subjects split into blocks have no pool of their own
            return None
        return BlockRef(category["id"], subject["id"], block_id)

    def resolve_block(self, target: Optional[str]) -> Optional[BlockRef]:
        """
        Resolves an upload target: "subject_id/block_id", or a bare
        "subject_id" for subjects without blocks (master blocks).
        """
        if not target or not isinstance(target, str):
            return None
        subject_id, _, block_id = target.strip().partition("/")
        return self.find_block(subject_id, block_id or None)

    def available_questions(self, subject_id: str, block_id: Optional[str] = None) -> int:
        ref = self.find_block(subject_id, block_id)
        if not ref:
            return 0
        _, subject = self.subject_map[subject_id]
        if block_id:
            return next(b["question_count"] for b in subject["blocks"] if b["id"] == block_id)
        return subject.get("question_count", 0)

    def bound_selection(self, selection: QuizSelection) -> QuizSelection:
        """
        Validates a selection against the catalog and caps its count at the pool size.
        """
        ref = self.find_block(selection.subject_id, selection.block_id)
        if not ref:
            target = selection.subject_id + (f"/{selection.block_id}" if selection.block_id else "")
            raise ValidationError(f"Unknown quiz topic: {target}")

        available = self.available_questions(selection.subject_id, selection.block_id)
        if selection.question_count <= available:
            return selection
        return selection.model_copy(update={"question_count": available})

    def category_for(self, subject_ids: List[str]) -> str:
        """Category shared by all subjects, or "mixed"."""
        category_ids = {self.subject_map[s][0]["id"] for s in subject_ids if s in self.subject_map}
        if len(category_ids) == 1:
            return category_ids.pop()
        return MIXED_CATEGORY


# Singleton instance
catalog = Catalog()
