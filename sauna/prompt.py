"""Prompt construction shared by every provider."""


def build_prompt(prompt: str, context_paths: list[str]) -> str:
    """Prepend context path references to a prompt.

    Paths are listed as references, not inlined file contents; the agent
    reads them itself.

    Args:
        prompt: The user prompt.
        context_paths: File or directory paths to reference.

    Returns:
        The prompt prefixed with one ``Context: <path>`` line per path and a
        blank line, or the prompt unchanged when there are no paths.

    """
    if not context_paths:
        return prompt
    refs = "\n".join(f"Context: {path}" for path in context_paths)
    return f"{refs}\n\n{prompt}"
