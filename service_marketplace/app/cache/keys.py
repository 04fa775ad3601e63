"""
Naming of tagged cache keys and tags.
"""

from typing import List, Optional, Set, Tuple


# Entity types whose lifecycle drives cache invalidation
TRACKED_ENTITY_TYPES = ("Client", "Offer", "Partner", "Phone")

# Collections embedding or derived from other entity types
LIST_DEPENDENCIES = {
    "Client": (),
    "Offer": ("Partner", "Phone"),
    "Partner": (),
    "Phone": ("Offer",),
}

# Single resources embedding other entities, by the column referencing them
EMBEDDED_RELATIONS = {
    "Offer": {"Partner": "partner_uuid", "Phone": "phone_uuid"},
}


def _lcfirst(name: str) -> str:
    return name[:1].lower() + name[1:]


def entity_key(entity_type: str, uuid: str) -> str:
    return f"{entity_type}_{uuid}"


def entity_tag(entity_type: str) -> str:
    return f"{_lcfirst(entity_type)}_tag"


def list_tag(entity_type: str) -> str:
    return f"{_lcfirst(entity_type)}_list_tag"


def list_key(entity_type: str, scope: str, page: Optional[int] = None, per_page: Optional[int] = None) -> str:
    window = f"{page}_{per_page}" if page is not None else "full"
    return f"{entity_type}_list_{scope}_{window}"


def list_tags(entity_type: str) -> List[str]:
    """Tags of a cached collection of ``entity_type``."""
    return [list_tag(entity_type)] + [list_tag(dependency) for dependency in LIST_DEPENDENCIES.get(entity_type, ())]


def affected_list_types(changed_type: str) -> Set[str]:
    """Collection types whose content changes when ``changed_type`` changes."""
    return {
        list_type for list_type, dependencies in LIST_DEPENDENCIES.items()
        if list_type == changed_type or changed_type in dependencies
    }


def embedding_relations(changed_type: str) -> List[Tuple[str, str]]:
    """(resource type, reference column) pairs of single resources embedding ``changed_type``."""
    return [
        (resource_type, relations[changed_type])
        for resource_type, relations in EMBEDDED_RELATIONS.items()
        if changed_type in relations
    ]
