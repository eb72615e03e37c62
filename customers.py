"""Customer documents and their embedded projects and materials.

Every mutation is a single-document write. Nested project writes address the
project by array index and guard on that index still holding the same
project id, so a concurrent removal makes the write miss (-> not found)
instead of landing on a neighbour. Materials are removed with a positional
$pull on the material id, so a concurrent add to the same list survives.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

from database import CUSTOMERS, parse_object_id
from errors import InvalidRequest, NotFound
from schemas import Customer, Material, Project

logger = logging.getLogger(__name__)

CUSTOMER_FIELDS = ("name", "email", "phone", "address")


def customer_oid(customer_id: str):
    oid = parse_object_id(customer_id)
    if oid is None:
        raise InvalidRequest("Invalid customer ID format")
    return oid


def list_customers(db) -> List[Dict[str, Any]]:
    return list(db[CUSTOMERS].find())


def get_customer(db, customer_id: str) -> Dict[str, Any]:
    customer = db[CUSTOMERS].find_one({"_id": customer_oid(customer_id)})
    if customer is None:
        raise NotFound("Customer not found")
    customer.setdefault("projects", [])
    return customer


def create_customer(db, customer: Customer) -> Dict[str, Any]:
    doc = customer.to_mongo()
    doc["_id"] = db[CUSTOMERS].insert_one(doc).inserted_id
    return doc


def update_customer(db, customer_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Overwrite only the fields present in changes; None means absent."""
    update = {k: v for k, v in changes.items() if k in CUSTOMER_FIELDS and v is not None}
    oid = customer_oid(customer_id)
    if not update:
        return get_customer(db, customer_id)
    updated = db[CUSTOMERS].find_one_and_update(
        {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if updated is None:
        raise NotFound("Customer not found")
    logger.info("Customer updated: %s", updated.get("name"))
    return updated


def delete_customer(db, customer_id: str) -> None:
    result = db[CUSTOMERS].delete_one({"_id": customer_oid(customer_id)})
    if result.deleted_count == 0:
        raise NotFound("Customer not found")


def submit_bid(db, *, name: str, email: str, phone: str, address: Optional[str],
               project_name: str, project_description: str) -> Tuple[Dict[str, Any], bool]:
    """Find-or-create a customer by email and append a Pending project.

    Returns (customer, created).
    """
    project = Project(name=project_name, description=project_description, status="Pending").to_mongo()
    existing = db[CUSTOMERS].find_one_and_update(
        {"email": email},
        {"$push": {"projects": project}},
        return_document=ReturnDocument.AFTER,
    )
    if existing is not None:
        return existing, False

    customer = Customer(name=name, email=email, phone=phone, address=address or "")
    doc = customer.to_mongo()
    doc["projects"] = [project]
    doc["_id"] = db[CUSTOMERS].insert_one(doc).inserted_id
    return doc, True


def _locate_project(db, customer_id: str, project_id: str) -> Tuple[Any, int, Dict[str, Any]]:
    customer = get_customer(db, customer_id)
    pid = parse_object_id(project_id)
    for index, project in enumerate(customer["projects"]):
        if pid is not None and project.get("_id") == pid:
            return customer["_id"], index, project
    raise NotFound("Project not found")


def _write_project(db, cid, index: int, project_id, update: Dict[str, Any]) -> Dict[str, Any]:
    updated = db[CUSTOMERS].find_one_and_update(
        {"_id": cid, f"projects.{index}._id": project_id},
        update,
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound("Project not found")
    return updated["projects"][index]


def add_project(db, customer_id: str, project: Project) -> Dict[str, Any]:
    doc = project.to_mongo()
    result = db[CUSTOMERS].update_one({"_id": customer_oid(customer_id)}, {"$push": {"projects": doc}})
    if result.matched_count == 0:
        raise NotFound("Customer not found")
    return doc


def remove_project(db, customer_id: str, project_id: str) -> None:
    cid, _, project = _locate_project(db, customer_id, project_id)
    db[CUSTOMERS].update_one({"_id": cid}, {"$pull": {"projects": {"_id": project["_id"]}}})
    logger.info("Project deleted: %s", project_id)


def update_project(db, customer_id: str, project_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Set top-level fields (bidAmount, status, ...) on one embedded project."""
    cid, index, project = _locate_project(db, customer_id, project_id)
    update = {"$set": {f"projects.{index}.{k}": v for k, v in fields.items()}}
    return _write_project(db, cid, index, project["_id"], update)


def add_material(db, customer_id: str, project_id: str, material: Material) -> List[Dict[str, Any]]:
    cid, index, project = _locate_project(db, customer_id, project_id)
    updated = _write_project(
        db, cid, index, project["_id"],
        {"$push": {f"projects.{index}.materials": material.to_mongo()}},
    )
    logger.info("Material added to project: %s", project.get("name"))
    return updated.get("materials", [])


def remove_material(db, customer_id: str, project_id: str, material_id: str) -> List[Dict[str, Any]]:
    cid, _, project = _locate_project(db, customer_id, project_id)
    mid = parse_object_id(material_id)
    if mid is None or not any(m.get("_id") == mid for m in project.get("materials", [])):
        raise NotFound("Material not found")
    updated = db[CUSTOMERS].find_one_and_update(
        {"_id": cid, "projects": {"$elemMatch": {"_id": project["_id"]}}},
        {"$pull": {"projects.$.materials": {"_id": mid}}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound("Project not found")
    logger.info("Material deleted: %s", material_id)
    for p in updated["projects"]:
        if p.get("_id") == project["_id"]:
            return p.get("materials", [])
    raise NotFound("Project not found")
