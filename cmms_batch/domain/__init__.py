"""Pure PM domain: schedule evaluation, due-date arithmetic, payload building."""
