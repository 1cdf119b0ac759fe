"""Gateway notification bodies as the rails deliver them."""


def stk_callback(checkout_request_id, result_code=0, amount=500, receipt="QKX1A2B3C4", merchant_request_id="29115-34620561-1"):
    callback = {
        "MerchantRequestID": merchant_request_id,
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled by user",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20261019143015},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


def jenga_callback(reference, status="SUCCESS", amount="1500.00", transaction_ref="EQ-TX-0001", extra_data=None):
    body = {
        "reference": reference,
        "transactionRef": transaction_ref,
        "status": status,
        "amount": amount,
        "transactionDate": "2026-10-19T11:30:15Z",
        "description": "Payment successful" if status == "SUCCESS" else "Insufficient funds",
    }
    if extra_data:
        body["extraData"] = extra_data
    return body


def jenga_ipn(reference, status="SUCCESS", amount="1500.00", bill_number="BILL-0001"):
    return {
        "callbackType": "IPN",
        "customer": {"name": "Jane Wanjiku", "mobileNumber": "254712345678", "reference": ""},
        "transaction": {
            "date": "2026-10-19T11:30:15.000Z",
            "reference": reference,
            "paymentMode": "CARD",
            "amount": amount,
            "billNumber": bill_number,
            "serviceCharge": "25",
            "status": status,
            "remarks": "Card payment",
        },
        "bank": {"reference": "FT2610190001", "transactionType": "C", "account": None},
    }
