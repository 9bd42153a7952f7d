# Demo company used by the assistant when the user has no QuickBooks connection.
# Records are shaped like QuickBooks entities so both backends share one mapper.

MOCK_INVOICES = [
    {
        "Id": "1",
        "DocNumber": "INV-1001",
        "SyncToken": "0",
        "TxnDate": "2024-01-15",
        "DueDate": "2024-02-14",
        "TotalAmt": 2500.00,
        "Balance": 0,
        "CustomerRef": {"value": "1", "name": "Acme Corporation"},
        "Line": [
            {
                "Id": "1",
                "Amount": 2500.00,
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": {
                    "ItemRef": {"value": "1", "name": "Services"},
                    "Qty": 1,
                    "UnitPrice": 2500.00,
                },
            }
        ],
    },
    {
        "Id": "2",
        "DocNumber": "INV-1002",
        "SyncToken": "0",
        "TxnDate": "2024-01-20",
        "DueDate": "2024-02-19",
        "TotalAmt": 1800.50,
        "Balance": 1800.50,
        "CustomerRef": {"value": "2", "name": "TechStart Inc."},
        "Line": [
            {
                "Id": "1",
                "Amount": 1800.50,
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": {
                    "ItemRef": {"value": "2", "name": "Hours"},
                    "Qty": 1,
                    "UnitPrice": 1800.50,
                },
            }
        ],
    },
    {
        "Id": "3",
        "DocNumber": "INV-1003",
        "SyncToken": "0",
        "TxnDate": "2024-01-10",
        "DueDate": "2024-02-09",
        "TotalAmt": 3200.75,
        "Balance": 3200.75,
        "CustomerRef": {"value": "3", "name": "Global Dynamics"},
        "Line": [],
    },
    {
        "Id": "4",
        "DocNumber": "INV-1004",
        "SyncToken": "0",
        "TxnDate": "2024-01-25",
        "DueDate": "2024-02-24",
        "TotalAmt": 950.00,
        "Balance": 0,
        "CustomerRef": {"value": "4", "name": "Sunrise Solutions"},
        "Line": [],
    },
]

MOCK_ITEMS = [
    {"Id": "1", "Name": "Services", "Description": "General services", "UnitPrice": 0, "Type": "Service", "Active": True},
    {"Id": "2", "Name": "Hours", "Description": "Billable hours", "UnitPrice": 0, "Type": "Service", "Active": True},
]
