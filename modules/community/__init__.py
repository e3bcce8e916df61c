"""Community extensions registry."""

COMMUNITY_EXTENSIONS: tuple[str, ...] = (
    "modules.community.reaction_roles",
)

__all__ = ["COMMUNITY_EXTENSIONS"]
